"""Storefront backend API client."""

import logging
from typing import Any

from pydantic import TypeAdapter, ValidationError as ModelValidationError

from .auth import AuthSession
from .errors import ApiError
from .http_client import HttpClient
from .models import (
    CartState,
    Order,
    PaymentConfig,
    PaymentConfirmation,
    PaymentIntent,
    SavedPaymentMethod,
    UserProfile,
)

logger = logging.getLogger(__name__)


def _validate(model: Any, data: Any, endpoint: str) -> Any:
    try:
        return TypeAdapter(model).validate_python(data)
    except ModelValidationError as e:
        logger.error(f"Unexpected response from {endpoint}: {e}")
        raise ApiError(f"Unexpected response from {endpoint}") from e


def _unpaginate(data: Any) -> Any:
    # List endpoints may be paginated ({"results": [...]}) or plain lists.
    if isinstance(data, dict) and "results" in data:
        return data["results"]
    return data


def order_payload(cart: CartState) -> dict[str, Any]:
    """Build the order-creation body from a cart snapshot."""
    return {
        "shipping_address": cart.shipping_address,
        "notes": cart.notes,
        "items": [
            {
                "product_id": item.id,
                "quantity": item.quantity,
                "price": str(item.unit_price),
            }
            for item in cart.items.values()
        ],
    }


class StorefrontClient:
    """Typed wrappers for the backend calls. Every call goes through HttpClient."""

    def __init__(self, http: HttpClient, auth: AuthSession) -> None:
        self.http = http
        self.auth = auth

    async def get_profile(self) -> UserProfile:
        data = await self.http.get("/auth/profile/")
        return _validate(UserProfile, data, "/auth/profile/")

    async def update_profile(self, data: dict[str, Any]) -> UserProfile:
        """Update the authenticated user and refresh the session's snapshot."""
        result = await self.http.put("/auth/profile/", json=data)
        user = _validate(UserProfile, result, "/auth/profile/")
        self.auth.set_user(user)
        return user

    async def create_order(self, cart: CartState) -> Order:
        logger.info(f"Creating order for {cart.count} item(s)")
        data = await self.http.post("/orders/", json=order_payload(cart))
        order = _validate(Order, data, "/orders/")
        logger.info(f"Created order {order.id}")
        return order

    async def get_orders(self) -> list[Order]:
        data = await self.http.get("/orders/")
        return _validate(list[Order], _unpaginate(data), "/orders/")

    async def cancel_order(self, order_id: int) -> Any:
        logger.info(f"Cancelling order {order_id}")
        return await self.http.post(f"/orders/{order_id}/cancel")

    async def get_payment_config(self) -> PaymentConfig:
        data = await self.http.get("/payments/config/")
        return _validate(PaymentConfig, data, "/payments/config/")

    async def create_payment_intent(self, order_id: int, save_payment_method: bool = False) -> PaymentIntent:
        data = await self.http.post(
            "/payments/create_payment_intent/",
            json={"order_id": order_id, "save_payment_method": save_payment_method},
        )
        intent = _validate(PaymentIntent, data, "/payments/create_payment_intent/")
        logger.info(f"Payment intent {intent.payment_intent_id} ready for order {order_id}")
        return intent

    async def confirm_payment(self, payment_intent_id: str, payment_method_id: str) -> PaymentConfirmation:
        data = await self.http.post(
            "/payments/confirm_payment/",
            json={"payment_intent_id": payment_intent_id, "payment_method_id": payment_method_id},
        )
        return _validate(PaymentConfirmation, data, "/payments/confirm_payment/")

    async def get_payment_methods(self) -> list[SavedPaymentMethod]:
        data = await self.http.get("/payments/payment_methods/")
        return _validate(list[SavedPaymentMethod], _unpaginate(data), "/payments/payment_methods/")

    async def delete_payment_method(self, payment_method_id: str) -> Any:
        logger.info(f"Deleting saved payment method {payment_method_id}")
        return await self.http.delete(
            "/payments/payment_methods/",
            json={"payment_method_id": payment_method_id},
        )
