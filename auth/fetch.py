from __future__ import annotations

import httpx

from auth.errors import SessionExpired
from auth.refresh import RefreshCoordinator
from auth.storage import SessionStore
from sendsecure.constants import LOGGER


class AuthenticatedClient:
    """Bearer-authenticated requests with one refresh-and-retry on 401.

    Request bodies are re-sent on retry, so pass bytes/str/json/data rather
    than one-shot streams.
    """

    def __init__(
        self,
        *,
        sessions: SessionStore,
        coordinator: RefreshCoordinator,
        client: httpx.AsyncClient,
    ) -> None:
        self._sessions = sessions
        self._coordinator = coordinator
        self._client = client

    async def request(
        self,
        method: str,
        url: str,
        *,
        retry: bool = True,
        **kwargs,
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        session = await self._sessions.load()
        if session is not None:
            headers["Authorization"] = f"Bearer {session.access_token}"

        response = await self._client.request(method, url, headers=headers, **kwargs)
        if response.status_code != 401:
            return response

        await response.aclose()
        if retry:
            LOGGER.info("Received 401 for %s %s; refreshing token", method, url)
            if await self._coordinator.refresh():
                return await self.request(method, url, retry=False, headers=headers, **kwargs)

        await self._coordinator.expire_session()
        raise SessionExpired()

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def delete(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)
