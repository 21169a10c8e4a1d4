"""Builds and wires the storefront session components."""

import logging
import os
from typing import Optional

import httpx

from .auth import AuthSession
from .cart import CartStore
from .checkout import CheckoutOrchestrator
from .config import Settings
from .errors import StorefrontError
from .gateway import PaymentGateway, StripeGateway
from .http_client import HttpClient
from .storage import PersistentStore
from .storefront_client import StorefrontClient

logger = logging.getLogger(__name__)


class Storefront:
    """One process-wide set of cart, session, client and checkout objects."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        gateway: Optional[PaymentGateway] = None,
    ) -> None:
        self.settings = settings
        self.store = PersistentStore(os.path.expanduser(settings.state_file))
        self.client = httpx.AsyncClient(
            base_url=settings.api_url.rstrip("/"),
            timeout=settings.timeout,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            transport=transport,
        )
        self.cart = CartStore(self.store)
        self.auth = AuthSession(self.store, self.client)
        self.http = HttpClient(self.auth, self.client)
        self.api = StorefrontClient(self.http, self.auth)
        self.gateway = gateway or StripeGateway(
            publishable_key=settings.stripe_publishable_key,
            key_loader=self._load_publishable_key,
            base_url=settings.stripe_api_url,
            timeout=settings.timeout,
        )
        self.checkout = CheckoutOrchestrator(
            self.cart,
            self.api,
            self.gateway,
            auth=self.auth,
            max_confirm_attempts=settings.max_confirm_attempts,
        )

    async def _load_publishable_key(self) -> str:
        config = await self.api.get_payment_config()
        return config.publishable_key

    async def start(self) -> None:
        """Restore the persisted session, or log in with configured credentials."""
        if await self.auth.restore():
            return
        credentials = self.settings.credentials
        if credentials is None:
            logger.info("No saved session and no configured credentials")
            return
        try:
            await self.auth.login(credentials)
        except StorefrontError as e:
            logger.warning(f"Auto-login failed: {e}")

    async def ensure_authenticated(self) -> bool:
        """Ensure the session is authenticated, auto-login if credentials are available."""
        if self.auth.is_authenticated():
            return True
        credentials = self.settings.credentials
        if credentials is None:
            return False
        logger.info("Auto-logging in with configured credentials...")
        await self.auth.login(credentials)
        return True

    async def close(self) -> None:
        self.checkout.close()
        await self.client.aclose()
        closer = getattr(self.gateway, "aclose", None)
        if closer is not None:
            await closer()
