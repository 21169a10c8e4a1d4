"""External payment gateway confirmation."""

import logging
from typing import Awaitable, Callable, Optional, Protocol

import httpx

from .errors import ApiError, AuthError, PaymentDeclined, TransportError, ValidationError
from .models import GatewayConfirmation, PaymentMethodDetails

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """Confirms a payment intent directly with the gateway.

    Card data goes to the gateway only; the storefront backend never sees it.
    """

    async def confirm_card_payment(
        self, client_secret: str, payment_method: PaymentMethodDetails
    ) -> GatewayConfirmation:
        ...


def intent_id_from_secret(client_secret: str) -> str:
    """Client secrets have the form ``<intent id>_secret_<random>``."""
    intent_id, sep, _ = client_secret.partition("_secret_")
    if not sep or not intent_id:
        raise ValidationError("Malformed client secret", field_errors={"client_secret": ["malformed"]})
    return intent_id


class StripeGateway:
    """Stripe PaymentIntents confirmation with a publishable key."""

    BASE_URL = "https://api.stripe.com/v1"

    def __init__(
        self,
        publishable_key: Optional[str] = None,
        key_loader: Optional[Callable[[], Awaitable[str]]] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            publishable_key: Stripe publishable key
            key_loader: Called once to obtain the key when none is configured
            base_url: Override for the Stripe API root
            transport: Optional httpx transport (used by tests)
            timeout: Request timeout in seconds
        """
        self.publishable_key = publishable_key
        self.key_loader = key_loader
        self.client = httpx.AsyncClient(
            base_url=base_url or self.BASE_URL,
            timeout=timeout,
            transport=transport,
        )

    async def _key(self) -> str:
        if not self.publishable_key:
            if self.key_loader is None:
                raise AuthError("No payment gateway publishable key configured")
            self.publishable_key = await self.key_loader()
            logger.info("Loaded payment gateway configuration")
        return self.publishable_key

    def _form(self, client_secret: str, payment_method: PaymentMethodDetails) -> dict[str, str]:
        data = {"client_secret": client_secret}
        if payment_method.payment_method_id:
            data["payment_method"] = payment_method.payment_method_id
        elif payment_method.card:
            card = payment_method.card
            data.update(
                {
                    "payment_method_data[type]": "card",
                    "payment_method_data[card][number]": card.number,
                    "payment_method_data[card][exp_month]": str(card.exp_month),
                    "payment_method_data[card][exp_year]": str(card.exp_year),
                    "payment_method_data[card][cvc]": card.cvc,
                }
            )
            billing = payment_method.billing_details
            if billing.name:
                data["payment_method_data[billing_details][name]"] = billing.name
            if billing.email:
                data["payment_method_data[billing_details][email]"] = billing.email
        else:
            raise ValidationError(
                "A payment method id or card details are required",
                field_errors={"payment_method": ["required"]},
            )
        return data

    async def confirm_card_payment(
        self, client_secret: str, payment_method: PaymentMethodDetails
    ) -> GatewayConfirmation:
        """
        Confirm the intent identified by ``client_secret``.

        Raises:
            PaymentDeclined: The gateway declined or needs further customer action
            TransportError: The gateway could not be reached
        """
        intent_id = intent_id_from_secret(client_secret)
        data = self._form(client_secret, payment_method)
        key = await self._key()

        logger.info(f"Confirming payment intent {intent_id} with gateway")
        try:
            response = await self.client.post(
                f"/payment_intents/{intent_id}/confirm",
                data=data,
                headers={"Authorization": f"Bearer {key}"},
            )
        except httpx.TransportError as e:
            raise TransportError(f"Could not reach payment gateway: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code == 402 or (response.status_code >= 400 and "error" in body):
            error = body.get("error")
            if not isinstance(error, dict):
                error = {}
            code = error.get("decline_code") or error.get("code")
            message = error.get("message") or "Payment declined"
            logger.warning(f"Gateway declined intent {intent_id}: {code}")
            if response.status_code in (401, 403):
                raise AuthError(message, status_code=response.status_code)
            raise PaymentDeclined(message, code=code, status_code=response.status_code)
        if not response.is_success:
            raise ApiError(f"Payment gateway error (HTTP {response.status_code})", status_code=response.status_code)

        status = body.get("status")
        if status not in ("succeeded", "processing", "requires_capture"):
            raise PaymentDeclined(f"Payment not completed: {status}", code=status)

        payment_method_id = body.get("payment_method")
        if isinstance(payment_method_id, dict):
            payment_method_id = payment_method_id.get("id")
        return GatewayConfirmation(
            payment_intent_id=body.get("id", intent_id),
            payment_method_id=payment_method_id or payment_method.payment_method_id or "",
            status=status,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
