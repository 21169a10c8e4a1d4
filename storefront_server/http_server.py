"""HTTP server exposing the storefront session as a REST API."""

import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import Settings
from .container import Storefront
from .errors import (
    AuthError,
    CheckoutError,
    ConflictError,
    NotFoundError,
    PaymentDeclined,
    StorefrontError,
    TransportError,
    ValidationError,
)
from .models import AuthCredentials, CheckoutResult, PaymentMethodDetails, Product

logger = logging.getLogger("storefront-http-server")

STATUS_BY_ERROR = (
    (ValidationError, 400),
    (AuthError, 401),
    (PaymentDeclined, 402),
    (NotFoundError, 404),
    (ConflictError, 409),
    (CheckoutError, 409),
    (TransportError, 502),
)


class AddToCartRequest(BaseModel):
    product_id: str
    name: str
    price: Decimal = Field(gt=0)


class UpdateCartRequest(BaseModel):
    product_id: str
    quantity: int


class ShippingRequest(BaseModel):
    shipping_address: Optional[str] = None
    notes: Optional[str] = None


class StartCheckoutRequest(BaseModel):
    save_payment_method: bool = False


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str
    password_confirm: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


def create_app(storefront: Optional[Storefront] = None) -> FastAPI:
    """Build the FastAPI app; a prebuilt ``storefront`` is used as-is (tests)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if storefront is None:
            settings = Settings.from_env()
            app.state.storefront = Storefront(settings)
            await app.state.storefront.start()
        else:
            app.state.storefront = storefront
        logger.info("Starting Storefront HTTP Server...")
        yield
        logger.info("Shutting down Storefront HTTP Server...")
        if storefront is None:
            await app.state.storefront.close()

    app = FastAPI(
        title="Storefront MCP Server",
        description="HTTP API for the storefront cart, session and checkout",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
        status_code = exc.status_code if exc.status_code and exc.status_code >= 400 else 500
        for error_type, mapped in STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status_code = mapped
                break
        content: dict[str, Any] = {"detail": exc.message, "error": type(exc).__name__}
        if isinstance(exc, ValidationError) and exc.field_errors:
            content["fields"] = exc.field_errors
        if isinstance(exc, PaymentDeclined):
            content["code"] = exc.code
        return JSONResponse(status_code=status_code, content=content)

    def _storefront(request: Request) -> Storefront:
        return request.app.state.storefront

    def _checkout_response(result: CheckoutResult) -> dict[str, Any]:
        if isinstance(result.error, CheckoutError):
            raise result.error
        return {
            "ok": result.ok,
            "phase": result.phase.value,
            "failure": result.failure.value if result.failure else None,
            "error": str(result.error) if result.error else None,
            "order_id": result.order_id,
            "totals": result.totals.model_dump(mode="json") if result.totals else None,
            "retryable": result.retryable,
            "stale": result.stale,
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        return {"status": "healthy", "authenticated": _storefront(request).auth.is_authenticated()}

    @app.post("/auth/login")
    async def login(request: Request, credentials: AuthCredentials):
        user = await _storefront(request).auth.login(credentials)
        return {"success": True, "user": user.model_dump(mode="json")}

    @app.post("/auth/logout")
    async def logout(request: Request):
        _storefront(request).auth.logout()
        return {"success": True}

    @app.get("/auth/status")
    async def auth_status(request: Request):
        auth = _storefront(request).auth
        return {
            "state": auth.state.value,
            "email": auth.user.email if auth.user else None,
        }

    @app.post("/auth/register", status_code=201)
    async def register(request: Request, body: RegisterRequest):
        return await _storefront(request).auth.register(body.model_dump(exclude_none=True))

    @app.get("/auth/profile")
    async def get_profile(request: Request):
        user = await _storefront(request).api.get_profile()
        return user.model_dump(mode="json")

    @app.put("/auth/profile")
    async def update_profile(request: Request, body: ProfileUpdateRequest):
        user = await _storefront(request).api.update_profile(body.model_dump(exclude_none=True))
        return user.model_dump(mode="json")

    @app.get("/cart")
    async def get_cart(request: Request):
        cart = _storefront(request).cart
        return {
            **cart.state.model_dump(mode="json"),
            "count": cart.cart_count,
            "total": str(cart.cart_total),
        }

    @app.post("/cart/add")
    async def add_to_cart(request: Request, body: AddToCartRequest):
        cart = _storefront(request).cart
        cart.add_item(Product(id=body.product_id, name=body.name, unit_price=body.price))
        return await get_cart(request)

    @app.post("/cart/update")
    async def update_cart(request: Request, body: UpdateCartRequest):
        _storefront(request).cart.update_quantity(body.product_id, body.quantity)
        return await get_cart(request)

    @app.delete("/cart/items/{product_id}")
    async def remove_from_cart(request: Request, product_id: str):
        _storefront(request).cart.remove_item(product_id)
        return await get_cart(request)

    @app.post("/cart/shipping")
    async def set_shipping(request: Request, body: ShippingRequest):
        cart = _storefront(request).cart
        if body.shipping_address is not None:
            cart.set_shipping_address(body.shipping_address)
        if body.notes is not None:
            cart.set_notes(body.notes)
        return await get_cart(request)

    @app.post("/checkout/start")
    async def start_checkout(request: Request, body: StartCheckoutRequest):
        result = await _storefront(request).checkout.start_checkout(body.save_payment_method)
        return _checkout_response(result)

    @app.post("/checkout/retry-intent")
    async def retry_intent(request: Request):
        return _checkout_response(await _storefront(request).checkout.retry_payment_intent())

    @app.post("/checkout/confirm")
    async def confirm_payment(request: Request, body: PaymentMethodDetails):
        return _checkout_response(await _storefront(request).checkout.confirm_payment(body))

    @app.get("/checkout")
    async def checkout_status(request: Request):
        session = _storefront(request).checkout.session
        if session is None:
            return {"phase": "idle"}
        return session.model_dump(mode="json", exclude={"client_secret"})

    @app.delete("/checkout")
    async def abandon_checkout(request: Request):
        _checkout_response(_storefront(request).checkout.abandon())
        return {"phase": "idle"}

    @app.get("/orders")
    async def get_orders(request: Request):
        orders = await _storefront(request).api.get_orders()
        return [order.model_dump(mode="json") for order in orders]

    @app.post("/orders/{order_id}/cancel")
    async def cancel_order(request: Request, order_id: int):
        return await _storefront(request).api.cancel_order(order_id)

    @app.get("/payments/methods")
    async def get_payment_methods(request: Request):
        methods = await _storefront(request).api.get_payment_methods()
        return [method.model_dump(mode="json") for method in methods]

    @app.delete("/payments/methods/{payment_method_id}")
    async def delete_payment_method(request: Request, payment_method_id: str):
        await _storefront(request).api.delete_payment_method(payment_method_id)
        return {"success": True}

    return app


def run_http_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """
    Run the HTTP server.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to bind to (default: 8000)
        reload: Enable hot reloading (default: False)
    """
    import uvicorn

    logger.info(f"Starting server on {host}:{port} (reload={'enabled' if reload else 'disabled'})")

    if reload:
        uvicorn.run(
            "storefront_server.http_server:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=["storefront_server"],
            log_level="info",
        )
    else:
        uvicorn.run(create_app(), host=host, port=port, log_level="info")
