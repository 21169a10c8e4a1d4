import asyncio
import inspect
import json
from typing import Any, Callable, Optional, Union

import httpx

from storefront_server.errors import PaymentDeclined
from storefront_server.models import GatewayConfirmation, PaymentMethodDetails

API_URL = "http://backend.test/api"

Responder = Union[httpx.Response, Callable[[httpx.Request], Any]]


def json_response(status_code: int, body: Any = None) -> httpx.Response:
    return httpx.Response(status_code, json=body if body is not None else {})


class FakeBackend:
    """Serves canned responses per (method, path) through an httpx.MockTransport.

    Each route holds a queue of responses; the last one keeps being served
    once the queue is down to a single entry.
    """

    def __init__(self, prefix: str = "/api") -> None:
        self.prefix = prefix
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.calls: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self.handle)

    def on(self, method: str, path: str, *responses: Responder) -> "FakeBackend":
        self.routes[(method, self.prefix + path)] = list(responses)
        return self

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return json_response(404, {"detail": "Not found."})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(responder):
            responder = responder(request)
            if inspect.isawaitable(responder):
                responder = await responder
        # Serve a fresh copy so a queued response can be reused.
        return httpx.Response(responder.status_code, headers=responder.headers, content=responder.content)

    def requests_to(self, method: str, path: str) -> list[httpx.Request]:
        return [
            request
            for request in self.calls
            if request.method == method and request.url.path == self.prefix + path
        ]

    def count(self, method: str, path: str) -> int:
        return len(self.requests_to(method, path))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=API_URL, transport=self.transport)


def body_of(request: httpx.Request) -> Any:
    return json.loads(request.content or b"null")


def bearer(request: httpx.Request) -> str:
    return request.headers.get("Authorization", "")


def delayed(response: httpx.Response, delay: float = 0.01) -> Callable[[httpx.Request], Any]:
    async def respond(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(delay)
        return response

    return respond


def requires_token(token: str, body: Any) -> Callable[[httpx.Request], httpx.Response]:
    """Respond with ``body`` only to requests carrying ``token``; 401 otherwise."""

    def respond(request: httpx.Request) -> httpx.Response:
        if bearer(request) == f"Bearer {token}":
            return json_response(200, body)
        return json_response(401, {"detail": "Given token not valid for any token type"})

    return respond


PROFILE = {"id": 1, "username": "ada", "email": "ada@example.com", "first_name": "Ada", "last_name": "Lovelace"}


class FakeGateway:
    """Payment gateway stub: declines the first ``declines`` confirmations."""

    def __init__(self, declines: int = 0, payment_method_id: str = "pm_123") -> None:
        self.declines = declines
        self.payment_method_id = payment_method_id
        self.calls: list[tuple[str, PaymentMethodDetails]] = []
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def confirm_card_payment(self, client_secret: str, payment_method: PaymentMethodDetails) -> GatewayConfirmation:
        self.calls.append((client_secret, payment_method))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.declines > 0:
            self.declines -= 1
            raise PaymentDeclined("Your card was declined.", code="card_declined")
        return GatewayConfirmation(
            payment_intent_id=client_secret.partition("_secret_")[0],
            payment_method_id=self.payment_method_id,
            status="succeeded",
        )
