import asyncio
import os
import tempfile
import unittest

from fastapi.testclient import TestClient

from storefront_server.config import Settings
from storefront_server.container import Storefront
from storefront_server.http_server import create_app

from tests.fakes import API_URL, PROFILE, FakeBackend, FakeGateway, body_of, json_response


class HttpServerTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.backend = FakeBackend()
        self.backend.on("POST", "/auth/login/", json_response(200, {"access": "a1", "refresh": "r1"}))
        self.backend.on("GET", "/auth/profile/", json_response(200, PROFILE))
        self.storefront = Storefront(
            Settings(api_url=API_URL, state_file=os.path.join(self.tmp.name, "state.json")),
            transport=self.backend.transport,
            gateway=FakeGateway(),
        )
        self.client = TestClient(create_app(self.storefront))
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)
        asyncio.run(self.storefront.close())
        self.tmp.cleanup()

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "healthy", "authenticated": False})

    def test_cart_endpoints(self):
        self.client.post("/cart/add", json={"product_id": "A", "name": "Oak chair", "price": "10.00"})
        response = self.client.post("/cart/add", json={"product_id": "A", "name": "Oak chair", "price": "10.00"})

        body = response.json()
        self.assertEqual(body["count"], 2)
        self.assertEqual(body["total"], "20.00")

        response = self.client.post("/cart/update", json={"product_id": "A", "quantity": 0})
        self.assertEqual(response.json()["count"], 0)

    def test_empty_cart_checkout_is_conflict(self):
        response = self.client.post("/checkout/start", json={})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "EmptyCartError")
        self.assertEqual(self.backend.calls, [])

    def test_login_and_status(self):
        response = self.client.post("/auth/login", json={"email": "ada@example.com", "password": "pw"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["email"], PROFILE["email"])

        status = self.client.get("/auth/status").json()
        self.assertEqual(status["state"], "authenticated")

    def test_rejected_login_maps_to_401(self):
        self.backend.on("POST", "/auth/login/", json_response(401, {"detail": "No active account found"}))

        response = self.client.post("/auth/login", json={"email": "ada@example.com", "password": "bad"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "No active account found")

    def test_register(self):
        self.backend.on("POST", "/auth/register/", json_response(201, {"id": 2, "email": "grace@example.com"}))

        response = self.client.post(
            "/auth/register",
            json={"username": "grace", "email": "grace@example.com", "password": "pw", "password_confirm": "pw"},
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(
            body_of(self.backend.requests_to("POST", "/auth/register/")[0]),
            {"username": "grace", "email": "grace@example.com", "password": "pw", "password_confirm": "pw"},
        )

    def test_profile_get_and_update(self):
        self.client.post("/auth/login", json={"email": "ada@example.com", "password": "pw"})
        self.backend.on("PUT", "/auth/profile/", json_response(200, {**PROFILE, "phone": "555-0100"}))

        self.assertEqual(self.client.get("/auth/profile").json()["username"], "ada")
        response = self.client.put("/auth/profile", json={"phone": "555-0100"})

        self.assertEqual(response.json()["phone"], "555-0100")
        self.assertEqual(body_of(self.backend.requests_to("PUT", "/auth/profile/")[0]), {"phone": "555-0100"})

    def test_saved_payment_methods(self):
        self.client.post("/auth/login", json={"email": "ada@example.com", "password": "pw"})
        self.backend.on("GET", "/payments/payment_methods/", json_response(200, [{"id": "pm_1", "brand": "visa", "last4": "4242"}]))
        self.backend.on("DELETE", "/payments/payment_methods/", json_response(200, {"success": True}))

        methods = self.client.get("/payments/methods").json()
        response = self.client.delete("/payments/methods/pm_1")

        self.assertEqual(methods[0]["last4"], "4242")
        self.assertEqual(response.json(), {"success": True})
        self.assertEqual(
            body_of(self.backend.requests_to("DELETE", "/payments/payment_methods/")[0]),
            {"payment_method_id": "pm_1"},
        )

    def test_checkout_status_idle(self):
        self.assertEqual(self.client.get("/checkout").json(), {"phase": "idle"})


if __name__ == "__main__":
    unittest.main()
