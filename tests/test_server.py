import os
import tempfile
import unittest

from storefront_server import server
from storefront_server.config import Settings
from storefront_server.container import Storefront

from tests.fakes import API_URL, PROFILE, FakeBackend, FakeGateway, json_response

INTENT = {
    "client_secret": "pi_9_secret_xyz",
    "payment_intent_id": "pi_9",
    "subtotal": "10.00",
    "tax_amount": "0.80",
    "total": "10.80",
}


class ToolTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.backend = FakeBackend()
        self.backend.on("POST", "/auth/login/", json_response(200, {"access": "a1", "refresh": "r1"}))
        self.backend.on("GET", "/auth/profile/", json_response(200, PROFILE))
        self.backend.on("POST", "/orders/", json_response(201, {"id": 7, "status": "pending"}))
        self.backend.on("POST", "/payments/create_payment_intent/", json_response(200, INTENT))
        self.backend.on("POST", "/payments/confirm_payment/", json_response(200, {"status": "succeeded"}))
        self.settings = Settings(api_url=API_URL, state_file=os.path.join(self.tmp.name, "state.json"))
        server.storefront = Storefront(self.settings, transport=self.backend.transport, gateway=FakeGateway())

    async def asyncTearDown(self):
        await server.storefront.close()
        self.tmp.cleanup()

    async def test_cart_tools(self):
        await server.handle_tool("storefront_add_to_cart", {"product_id": "A", "name": "Oak chair", "price": "10.00"})
        text = await server.handle_tool("storefront_get_cart", {})

        self.assertIn("Oak chair", text)
        self.assertIn("Total: $10.00", text)

        await server.handle_tool("storefront_clear_cart", {})
        self.assertEqual(await server.handle_tool("storefront_get_cart", {}), "Your cart is empty")

    async def test_checkout_requires_login(self):
        text = await server.handle_tool("storefront_start_checkout", {})
        self.assertEqual(text, server.NOT_AUTHENTICATED)

    async def test_purchase_through_tools(self):
        await server.handle_tool("storefront_login", {"email": "ada@example.com", "password": "pw"})
        await server.handle_tool("storefront_add_to_cart", {"product_id": "A", "name": "Oak chair", "price": "10.00"})

        started = await server.handle_tool("storefront_start_checkout", {})
        self.assertIn("Order: 7", started)
        self.assertIn("Total: $10.80", started)

        paid = await server.handle_tool("storefront_confirm_payment", {"payment_method_id": "pm_1"})
        self.assertEqual(paid, "Payment successful! Order 7 has been confirmed.")
        self.assertTrue(server.storefront.cart.is_empty())

    async def test_errors_are_rendered_as_text(self):
        self.backend.on("POST", "/auth/login/", json_response(401, {"detail": "No active account found"}))

        contents = await server.call_tool("storefront_login", {"email": "ada@example.com", "password": "bad"})

        self.assertEqual(contents[0].text, "Error: No active account found")


if __name__ == "__main__":
    unittest.main()
