"""Authentication and session management."""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, ValidationError

from .errors import AuthError, StorefrontError, raise_for_response
from .http_client import decode_json, send_request
from .models import AuthCredentials, TokenPair, UserProfile
from .storage import PersistentStore

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


AuthListener = Callable[["AuthSession"], None]


def _parse(model: type[BaseModel], response: httpx.Response, what: str) -> Any:
    try:
        return model.model_validate(decode_json(response))
    except ValidationError as e:
        raise AuthError(f"Malformed {what} response: {e.error_count()} error(s)") from e


class AuthSession:
    """Owns the access/refresh token pair and the authenticated user.

    Tokens are persisted under two independent keys so a restarted process
    can resume the session with ``restore()``. Only one token refresh is in
    flight at any time; concurrent callers of ``refresh()`` share it.
    """

    ACCESS_TOKEN_KEY = "access_token"
    REFRESH_TOKEN_KEY = "refresh_token"

    def __init__(self, store: PersistentStore, client: httpx.AsyncClient) -> None:
        """
        Initialize an empty session.

        Args:
            store: Durable storage for the token pair
            client: Unauthenticated HTTP client for the auth endpoints
        """
        self.store = store
        self.client = client
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.user: Optional[UserProfile] = None
        self.state = AuthState.UNAUTHENTICATED
        self._refresh_task: Optional[asyncio.Task] = None
        self._listeners: list[AuthListener] = []

    def is_authenticated(self) -> bool:
        return self.state == AuthState.AUTHENTICATED

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _store_tokens(self, access: str, refresh: Optional[str]) -> None:
        self.access_token = access
        self.store.set(self.ACCESS_TOKEN_KEY, access)
        if refresh is not None:
            self.refresh_token = refresh
            self.store.set(self.REFRESH_TOKEN_KEY, refresh)

    def _authenticate(self, user: UserProfile) -> None:
        self.user = user
        self.state = AuthState.AUTHENTICATED
        logger.info(f"Authenticated as {user.email or user.username}")
        self._notify()

    def _clear(self) -> None:
        was_active = self.state != AuthState.UNAUTHENTICATED or self.access_token is not None
        self.access_token = None
        self.refresh_token = None
        self.user = None
        self.state = AuthState.UNAUTHENTICATED
        self.store.remove(self.ACCESS_TOKEN_KEY, self.REFRESH_TOKEN_KEY)
        if was_active:
            logger.info("Session cleared")
            self._notify()

    async def _fetch_profile(self, access_token: str) -> UserProfile:
        response = await send_request(self.client, "GET", "/auth/profile/", token=access_token)
        raise_for_response(response)
        return _parse(UserProfile, response, "profile")

    async def login(self, credentials: AuthCredentials) -> UserProfile:
        """
        Log in and resolve the user profile as one operation.

        Raises:
            AuthError: Credentials rejected or the profile could not be fetched
            StorefrontError: Any other backend or transport failure
        """
        logger.info(f"Logging in as {credentials.email}")
        self.state = AuthState.AUTHENTICATING
        try:
            response = await send_request(self.client, "POST", "/auth/login/", json=credentials.model_dump())
            raise_for_response(response)
            tokens = _parse(TokenPair, response, "login")
            self._store_tokens(tokens.access, tokens.refresh)
            user = await self._fetch_profile(tokens.access)
        except StorefrontError as e:
            logger.warning(f"Login failed: {e}")
            self._clear()
            raise
        self._authenticate(user)
        return user

    async def register(self, data: dict[str, Any]) -> Any:
        """Create a new account. Does not log in."""
        response = await send_request(self.client, "POST", "/auth/register/", json=data)
        raise_for_response(response)
        logger.info(f"Registered account {data.get('email') or data.get('username')}")
        return decode_json(response)

    async def restore(self) -> bool:
        """Resume a persisted session. Returns True when the session is authenticated."""
        access = self.store.get(self.ACCESS_TOKEN_KEY)
        if not access:
            self.state = AuthState.UNAUTHENTICATED
            return False

        self.access_token = access
        self.refresh_token = self.store.get(self.REFRESH_TOKEN_KEY)
        self.state = AuthState.AUTHENTICATING
        try:
            try:
                user = await self._fetch_profile(access)
            except AuthError:
                if not self.refresh_token:
                    raise
                logger.info("Saved access token rejected, refreshing")
                user = await self._fetch_profile(await self.refresh())
        except StorefrontError as e:
            logger.warning(f"Could not restore session: {e}")
            self._clear()
            return False

        self._authenticate(user)
        return True

    async def refresh(self) -> str:
        """
        Exchange the refresh token for a new access token.

        Concurrent callers join the refresh already in flight instead of
        issuing another one.

        Raises:
            AuthError: No refresh token, or the backend rejected it
        """
        if self._refresh_task is None:
            if not self.refresh_token:
                raise AuthError("No refresh token available")
            self._refresh_task = asyncio.get_running_loop().create_task(
                self._refresh(self.refresh_token)
            )
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self, refresh_token: str) -> str:
        try:
            logger.info("Refreshing access token")
            try:
                response = await send_request(
                    self.client, "POST", "/auth/token/refresh/", json={"refresh": refresh_token}
                )
                raise_for_response(response)
                data = decode_json(response)
                if not isinstance(data, dict) or not data.get("access"):
                    raise AuthError("Malformed token refresh response")
            except StorefrontError as e:
                if self.refresh_token == refresh_token:
                    self._clear()
                if isinstance(e, AuthError):
                    raise
                raise AuthError(f"Token refresh failed: {e}", status_code=e.status_code) from e

            if self.refresh_token != refresh_token:
                raise AuthError("Session ended while the token was being refreshed")

            self._store_tokens(data["access"], data.get("refresh"))
            return data["access"]
        finally:
            self._refresh_task = None

    def logout(self) -> None:
        """End the session locally. Never waits on the network."""
        logger.info("Logging out")
        self._clear()

    def set_user(self, user: UserProfile) -> None:
        if self.access_token is None:
            raise AuthError("Not authenticated")
        self.user = user
        self._notify()
