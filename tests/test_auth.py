import jwt
import pytest

from storefront_service.auth import AuthService
from storefront_service.errors import AuthFailure, InvalidInput

from .test_api import start_checkout

PASSWORD = "correct-horse"


@pytest.fixture
def auth(customers):
    return AuthService(customers, "test-jwt-secret", bcrypt_rounds=4)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestAuthService:
    def test_register_then_login(self, auth):
        registered = auth.register("new@example.com", "Newton", PASSWORD)
        logged_in = auth.login("new@example.com", PASSWORD)

        assert registered["user"]["email"] == "new@example.com"
        assert logged_in["user"]["id"] == registered["user"]["id"]
        assert auth.authenticate(logged_in["token"]).name == "Newton"

    def test_password_is_stored_hashed(self, auth, customers):
        auth.register("hash@example.com", "Hashed", PASSWORD)

        stored = customers.get_by_email("hash@example.com").credential_hash
        assert stored != PASSWORD
        assert auth.check_password(PASSWORD, stored)
        assert not auth.check_password("wrong-password", stored)

    def test_token_claims(self, auth):
        token = auth.register("claims@example.com", "Claims", PASSWORD)["token"]

        claims = jwt.decode(token, "test-jwt-secret", algorithms=["HS256"])
        assert claims["email"] == "claims@example.com"
        assert claims["userId"]
        assert "exp" in claims

    def test_duplicate_registration(self, auth):
        auth.register("dup@example.com", "One", PASSWORD)

        with pytest.raises(InvalidInput):
            auth.register("dup@example.com", "Two", PASSWORD)

    def test_guest_record_is_claimed(self, auth, customers):
        guest = customers.get_or_create_guest("guest@example.com")

        registered = auth.register("guest@example.com", "Now Registered", PASSWORD)

        assert registered["user"]["id"] == guest.id
        assert not customers.get(guest.id).is_guest

    @pytest.mark.parametrize("email, password", [
        ("nobody@example.com", PASSWORD),
        ("known@example.com", "wrong-password"),
        ("guest-only@example.com", PASSWORD),
    ])
    def test_login_rejected(self, auth, customers, email, password):
        auth.register("known@example.com", "Known", PASSWORD)
        customers.get_or_create_guest("guest-only@example.com")

        with pytest.raises(AuthFailure):
            auth.login(email, password)

    @pytest.mark.parametrize("token", [None, "", "garbage", jwt.encode({"userId": "x"}, "other-secret")])
    def test_authenticate_never_raises(self, auth, token):
        assert auth.authenticate(token) is None

    def test_token_of_deleted_customer(self, auth):
        token = jwt.encode({"userId": "ghost", "email": "ghost@example.com"}, "test-jwt-secret")

        assert auth.authenticate(token) is None


class TestAuthEndpoints:
    def register(self, client, email="shopper@example.com"):
        res = client.post("/auth/register", json={"email": email, "name": "Shopper", "password": PASSWORD})
        assert res.status_code == 200, res.text
        return res.json()["token"]

    def test_register_login_verify(self, client):
        self.register(client)

        res = client.post("/auth/login", json={"email": "shopper@example.com", "password": PASSWORD})
        assert res.status_code == 200
        token = res.json()["token"]

        verified = client.get("/auth/verify", headers=bearer(token))
        assert verified.status_code == 200
        assert verified.json()["user"]["email"] == "shopper@example.com"

    def test_register_validation(self, client):
        res = client.post("/auth/register", json={"email": "not-an-email", "name": "X", "password": PASSWORD})

        assert res.status_code == 400

    def test_duplicate_and_bad_login(self, client):
        self.register(client)

        dup = client.post("/auth/register",
                          json={"email": "shopper@example.com", "name": "Again", "password": PASSWORD})
        bad = client.post("/auth/login", json={"email": "shopper@example.com", "password": "wrong-password"})

        assert dup.status_code == 400
        assert dup.json() == {"error": "User already exists"}
        assert bad.status_code == 401
        assert bad.json() == {"error": "Invalid credentials"}

    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer garbage"}, {"Authorization": "Token x"}])
    def test_verify_requires_valid_token(self, client, headers):
        res = client.get("/auth/verify", headers=headers)

        assert res.status_code == 401
        assert "error" in res.json()

    def test_authenticated_checkout_uses_identity(self, client):
        token = self.register(client)

        res = start_checkout(client, customer_info=None, headers=bearer(token))

        assert res.status_code == 201
        profile = client.get("/auth/profile", headers=bearer(token)).json()["user"]
        assert profile["orderCount"] == 1

    def test_identity_takes_precedence_over_customer_info(self, client):
        token = self.register(client)

        start_checkout(client, customer_info={"email": "someone-else@example.com"}, headers=bearer(token))

        assert client.app.state.customers.get_by_email("someone-else@example.com") is None

    def test_bad_token_on_checkout_counts_as_anonymous(self, client):
        res = start_checkout(client, customer_info=None, headers=bearer("garbage"))

        assert res.status_code == 400
        assert res.json() == {"error": "User authentication or customer info required"}

    def test_orders_are_private(self, client):
        mine = self.register(client, "mine@example.com")
        theirs = self.register(client, "theirs@example.com")
        my_order = start_checkout(client, customer_info=None, headers=bearer(mine)).json()["orderId"]
        start_checkout(client, customer_info=None, headers=bearer(theirs))

        listed = client.get("/orders", headers=bearer(mine)).json()
        assert [o["orderId"] for o in listed] == [my_order]
        assert listed[0]["items"][0]["productId"] == "sku1"
        assert client.get(f"/orders/{my_order}", headers=bearer(mine)).status_code == 200
        assert client.get(f"/orders/{my_order}", headers=bearer(theirs)).status_code == 404
        assert client.get("/orders").status_code == 401


class TestOrderEndpoints:
    def register(self, client, email):
        res = client.post("/auth/register", json={"email": email, "name": "Shopper", "password": PASSWORD})
        return res.json()["token"]

    def place(self, client, token, items=None):
        items = items if items is not None else [{"productId": "sku1", "quantity": 2}]
        return client.post("/orders", json={"items": items}, headers=bearer(token))

    def test_place_and_cancel_order(self, client):
        token = self.register(client, "buyer@example.com")

        placed = self.place(client, token)
        assert placed.status_code == 200, placed.text
        order = placed.json()
        assert (order["status"], order["total"]) == ("PENDING", 50.0)

        res = client.patch(f"/orders/{order['orderId']}/status", json={"status": "CANCELLED"}, headers=bearer(token))

        assert res.status_code == 200
        assert res.json()["status"] == "CANCELLED"
        assert client.get(f"/checkout/order-status/{order['orderId']}").json()["status"] == "CANCELLED"

    def test_completed_order_cannot_be_cancelled(self, client):
        token = self.register(client, "buyer@example.com")
        order_id = self.place(client, token).json()["orderId"]
        client.post(f"/checkout/complete/{order_id}")

        res = client.patch(f"/orders/{order_id}/status", json={"status": "CANCELLED"}, headers=bearer(token))

        assert res.status_code == 400
        assert res.json() == {"error": "Order cannot be cancelled", "status": "COMPLETED"}
        assert client.get(f"/checkout/order-status/{order_id}").json()["status"] == "COMPLETED"

    def test_foreign_order_not_found(self, client):
        owner = self.register(client, "owner@example.com")
        other = self.register(client, "other@example.com")
        order_id = self.place(client, owner).json()["orderId"]

        res = client.patch(f"/orders/{order_id}/status", json={"status": "CANCELLED"}, headers=bearer(other))

        assert res.status_code == 404
        assert client.get(f"/checkout/order-status/{order_id}").json()["status"] == "PENDING"

    def test_unknown_product(self, client):
        token = self.register(client, "buyer@example.com")

        res = self.place(client, token, [{"productId": "ghost", "quantity": 1}])

        assert res.status_code == 400
        assert res.json() == {"error": "Product ghost not found"}

    def test_empty_order(self, client):
        token = self.register(client, "buyer@example.com")

        res = self.place(client, token, [])

        assert res.status_code == 400
        assert res.json() == {"error": "Order items are required"}

    def test_requires_authentication(self, client):
        assert client.post("/orders", json={"items": [{"productId": "sku1", "quantity": 1}]}).status_code == 401
        assert client.patch("/orders/any/status", json={"status": "CANCELLED"}).status_code == 401
