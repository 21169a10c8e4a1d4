import os
import unittest
from urllib.parse import parse_qs

import httpx

from storefront_server.config import Settings
from storefront_server.container import Storefront
from storefront_server.errors import ApiError, AuthError, PaymentDeclined, ValidationError
from storefront_server.gateway import StripeGateway, intent_id_from_secret
from storefront_server.models import BillingDetails, CardInput, PaymentMethodDetails


def form_of(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


class StripeGatewayTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.requests = []
        self.response = httpx.Response(
            200, json={"id": "pi_1", "status": "succeeded", "payment_method": "pm_new"}
        )

    def gateway(self, **kwargs) -> StripeGateway:
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(self.response.status_code, content=self.response.content)

        return StripeGateway(transport=httpx.MockTransport(handler), base_url="https://stripe.test/v1", **kwargs)

    async def test_confirms_with_saved_method(self):
        gateway = self.gateway(publishable_key="pk_test_1")

        confirmation = await gateway.confirm_card_payment(
            "pi_1_secret_abc", PaymentMethodDetails(payment_method_id="pm_saved")
        )
        await gateway.aclose()

        request = self.requests[0]
        self.assertEqual(request.url.path, "/v1/payment_intents/pi_1/confirm")
        self.assertEqual(request.headers["Authorization"], "Bearer pk_test_1")
        self.assertEqual(form_of(request), {"client_secret": "pi_1_secret_abc", "payment_method": "pm_saved"})
        self.assertEqual(confirmation.payment_method_id, "pm_new")
        self.assertEqual(confirmation.status, "succeeded")

    async def test_card_details_and_billing_go_to_gateway(self):
        gateway = self.gateway(publishable_key="pk_test_1")
        details = PaymentMethodDetails(
            card=CardInput(number="4242424242424242", exp_month=12, exp_year=2030, cvc="123"),
            billing_details=BillingDetails(name="Ada Lovelace", email="ada@example.com"),
        )

        await gateway.confirm_card_payment("pi_1_secret_abc", details)
        await gateway.aclose()

        form = form_of(self.requests[0])
        self.assertEqual(form["payment_method_data[type]"], "card")
        self.assertEqual(form["payment_method_data[card][number]"], "4242424242424242")
        self.assertEqual(form["payment_method_data[billing_details][name]"], "Ada Lovelace")

    async def test_decline_raises_payment_declined(self):
        self.response = httpx.Response(
            402,
            json={"error": {"code": "card_declined", "decline_code": "insufficient_funds", "message": "Your card has insufficient funds."}},
        )
        gateway = self.gateway(publishable_key="pk_test_1")

        with self.assertRaises(PaymentDeclined) as ctx:
            await gateway.confirm_card_payment("pi_1_secret_abc", PaymentMethodDetails(payment_method_id="pm_1"))
        await gateway.aclose()

        self.assertEqual(ctx.exception.code, "insufficient_funds")
        self.assertEqual(ctx.exception.message, "Your card has insufficient funds.")

    async def test_requires_action_is_not_success(self):
        self.response = httpx.Response(200, json={"id": "pi_1", "status": "requires_action"})
        gateway = self.gateway(publishable_key="pk_test_1")

        with self.assertRaises(PaymentDeclined) as ctx:
            await gateway.confirm_card_payment("pi_1_secret_abc", PaymentMethodDetails(payment_method_id="pm_1"))
        await gateway.aclose()
        self.assertEqual(ctx.exception.code, "requires_action")

    async def test_non_object_error_body(self):
        self.response = httpx.Response(502, json="Bad gateway")
        gateway = self.gateway(publishable_key="pk_test_1")

        with self.assertRaises(ApiError) as ctx:
            await gateway.confirm_card_payment("pi_1_secret_abc", PaymentMethodDetails(payment_method_id="pm_1"))
        await gateway.aclose()
        self.assertEqual(ctx.exception.status_code, 502)

    async def test_decline_with_non_object_error(self):
        self.response = httpx.Response(402, json={"error": "card_declined"})
        gateway = self.gateway(publishable_key="pk_test_1")

        with self.assertRaises(PaymentDeclined) as ctx:
            await gateway.confirm_card_payment("pi_1_secret_abc", PaymentMethodDetails(payment_method_id="pm_1"))
        await gateway.aclose()
        self.assertEqual(ctx.exception.message, "Payment declined")

    async def test_timeout_comes_from_settings(self):
        storefront = Storefront(Settings(api_url="http://backend.test/api", timeout=5.0, state_file=os.devnull))
        try:
            self.assertEqual(storefront.gateway.client.timeout, httpx.Timeout(5.0))
        finally:
            await storefront.close()

    async def test_key_is_loaded_once_when_not_configured(self):
        loads = []

        async def load_key():
            loads.append(1)
            return "pk_from_backend"

        gateway = self.gateway(key_loader=load_key)
        details = PaymentMethodDetails(payment_method_id="pm_1")
        await gateway.confirm_card_payment("pi_1_secret_abc", details)
        await gateway.confirm_card_payment("pi_1_secret_abc", details)
        await gateway.aclose()

        self.assertEqual(len(loads), 1)
        self.assertEqual(self.requests[1].headers["Authorization"], "Bearer pk_from_backend")

    async def test_missing_key_and_loader(self):
        gateway = self.gateway()
        with self.assertRaises(AuthError):
            await gateway.confirm_card_payment("pi_1_secret_abc", PaymentMethodDetails(payment_method_id="pm_1"))
        await gateway.aclose()

    async def test_payment_method_is_required(self):
        gateway = self.gateway(publishable_key="pk_test_1")
        with self.assertRaises(ValidationError):
            await gateway.confirm_card_payment("pi_1_secret_abc", PaymentMethodDetails())
        await gateway.aclose()
        self.assertEqual(self.requests, [])


class ClientSecretTests(unittest.TestCase):
    def test_intent_id_from_secret(self):
        self.assertEqual(intent_id_from_secret("pi_3Mtw_secret_YrKJ"), "pi_3Mtw")

    def test_malformed_secret(self):
        with self.assertRaises(ValidationError):
            intent_id_from_secret("nonsense")

    def test_card_repr_hides_number(self):
        card = CardInput(number="4242424242424242", exp_month=1, exp_year=2030, cvc="123")
        self.assertNotIn("4242424242424242", repr(card))
        self.assertNotIn("123", str(card))


if __name__ == "__main__":
    unittest.main()
