"""Single request gateway to the storefront backend."""

import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx

from .errors import StorefrontError, TransportError, raise_for_response

if TYPE_CHECKING:
    from .auth import AuthSession

logger = logging.getLogger(__name__)


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    token: Optional[str] = None,
    json: Any = None,
    params: Optional[dict[str, Any]] = None,
) -> httpx.Response:
    """Send one request, attaching ``token`` as a bearer credential when given."""
    headers = {"Authorization": f"Bearer {token}"} if token else None
    try:
        return await client.request(method, url, json=json, params=params, headers=headers)
    except httpx.TransportError as e:
        logger.error(f"{method} {url} failed: {e}")
        raise TransportError(f"Could not reach {url}: {e}") from e


def decode_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpClient:
    """Attaches the session's access token and repairs it once on a 401.

    Retry policy: a request rejected with 401 is retried at most once, and
    only after the session produced a new access token. Without a refresh
    token the 401 is surfaced immediately.
    """

    def __init__(self, auth: "AuthSession", client: httpx.AsyncClient) -> None:
        self.auth = auth
        self.client = client

    async def send_with_auth_retry(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send a request and apply the refresh-and-retry-once policy to a 401."""
        token = self.auth.access_token
        response = await send_request(self.client, method, url, token=token, json=json, params=params)
        if response.status_code != 401:
            return response

        if not self.auth.refresh_token:
            logger.info(f"{method} {url} unauthorized and no refresh token available")
            return response

        if self.auth.access_token and self.auth.access_token != token:
            # Another request already replaced the token this one was sent with.
            new_token = self.auth.access_token
        else:
            try:
                new_token = await self.auth.refresh()
            except StorefrontError as e:
                logger.warning(f"Token refresh failed, surfacing original 401 for {method} {url}: {e}")
                self.auth.logout()
                return response

        logger.info(f"Retrying {method} {url} with refreshed token")
        return await send_request(self.client, method, url, token=new_token, json=json, params=params)

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Send a request and return the decoded body, raising the mapped error on failure."""
        response = await self.send_with_auth_retry(method, url, json=json, params=params)
        logger.debug(f"{method} {url} -> {response.status_code}")
        raise_for_response(response)
        return decode_json(response)

    async def get(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("GET", url, params=params)

    async def post(self, url: str, json: Any = None) -> Any:
        return await self.request("POST", url, json=json)

    async def put(self, url: str, json: Any = None) -> Any:
        return await self.request("PUT", url, json=json)

    async def delete(self, url: str, json: Any = None) -> Any:
        return await self.request("DELETE", url, json=json)

    async def aclose(self) -> None:
        await self.client.aclose()
