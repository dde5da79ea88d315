"""
auth.py — Customer registration, login and bearer token handling

Passwords are hashed with bcrypt; tokens are HS256 JWTs carrying the customer
id and email, valid for 24 hours. `authenticate` is the capability the checkout
workflow relies on: it turns a bearer token into an Identity or None and never
raises.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt

from .errors import AuthFailure, InvalidInput
from .logging_config import get_logger
from .models import Identity
from .store import CustomerStore

TOKEN_TTL = timedelta(hours=24)
JWT_ALGORITHM = "HS256"

log = get_logger(__name__)


class AuthService:
    def __init__(self, customers: CustomerStore, jwt_secret: str, bcrypt_rounds: int = 12):
        self.customers = customers
        self.jwt_secret = jwt_secret
        self.bcrypt_rounds = bcrypt_rounds

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode("utf-8")

    def check_password(self, password: str, credential_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), credential_hash.encode("utf-8"))
        except ValueError:
            return False

    def issue_token(self, identity: Identity) -> str:
        claims = {
            "userId": identity.id,
            "email": identity.email,
            "exp": datetime.now(timezone.utc) + TOKEN_TTL,
        }
        return jwt.encode(claims, self.jwt_secret, algorithm=JWT_ALGORITHM)

    def authenticate(self, token: Optional[str]) -> Optional[Identity]:
        """
        Resolves a bearer token to the customer it was issued for.

        Returns:
            Identity | None: None for a missing, malformed, expired or foreign token,
                or when the customer no longer exists.
        """
        if not token:
            return None
        try:
            claims = jwt.decode(token, self.jwt_secret, algorithms=[JWT_ALGORITHM])
        except jwt.PyJWTError:
            return None
        customer = self.customers.get(claims.get("userId", ""))
        return customer.to_identity() if customer else None

    def register(self, email: str, name: str, password: str) -> dict:
        """
        Registers a customer, or claims the guest record created for this email at checkout.

        Raises:
            InvalidInput: If a registered customer already uses the email.
        """
        credential_hash = self.hash_password(password)
        existing = self.customers.get_by_email(email)
        if existing is None:
            customer = self.customers.create(email, name, credential_hash)
        elif existing.is_guest:
            customer = self.customers.set_credentials(existing.id, name, credential_hash)
            if customer is None:
                raise InvalidInput("User already exists")
            log.info(f"Gastkunde {existing.id} wurde registriert.")
        else:
            raise InvalidInput("User already exists")

        identity = customer.to_identity()
        return {"token": self.issue_token(identity), "user": identity.model_dump()}

    def login(self, email: str, password: str) -> dict:
        """
        Raises:
            AuthFailure: Unknown email, guest customer or wrong password.
        """
        customer = self.customers.get_by_email(email)
        if customer is None or customer.is_guest or not self.check_password(password, customer.credential_hash):
            raise AuthFailure("Invalid credentials")
        identity = customer.to_identity()
        return {"token": self.issue_token(identity), "user": identity.model_dump()}
