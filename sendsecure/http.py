from __future__ import annotations

import asyncio
import logging

import httpx

from .constants import IDEMPOTENT_METHODS, LOGGER
from .env import AuthConfig


def _retry_after_seconds(header: str | None) -> int | None:
    if header is None:
        return None
    try:
        return max(0, int(header))
    except ValueError:
        return None


class RetryTransport(httpx.AsyncBaseTransport):
    """Retry idempotent requests on 429 and 5xx.

    Token endpoint calls are POSTs and pass straight through: a replayed
    authorization code or rotated refresh token would be rejected anyway.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = 2,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._max_retries = max(0, max_retries)
        self._sleep = sleep
        self._logger = logger or LOGGER

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if self._max_retries == 0 or request.method not in IDEMPOTENT_METHODS:
            return await self._transport.handle_async_request(request)

        retries = 0
        while True:
            response = await self._transport.handle_async_request(request)

            if response.status_code == 429 and retries < min(self._max_retries, 1):
                wait_seconds = _retry_after_seconds(response.headers.get("retry-after"))
                if wait_seconds is None:
                    wait_seconds = 1
                self._logger.warning(
                    "Retrying 429 after %ss (%s %s)",
                    wait_seconds,
                    request.method,
                    request.url,
                )
                await response.aclose()
                await self._sleep(wait_seconds)
                retries += 1
                continue

            if 500 <= response.status_code < 600 and retries < self._max_retries:
                backoff_seconds = 2**retries
                self._logger.warning(
                    "Retrying %s after %ss (%s %s)",
                    response.status_code,
                    backoff_seconds,
                    request.method,
                    request.url,
                )
                await response.aclose()
                await self._sleep(backoff_seconds)
                retries += 1
                continue

            return response

    async def aclose(self) -> None:
        await self._transport.aclose()


async def log_request(request: httpx.Request) -> None:
    LOGGER.info("HTTP request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    LOGGER.info(
        "HTTP response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        LOGGER.warning("HTTP error body: %s", text)


def build_http_client(
    config: AuthConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    debug: bool = False,
) -> httpx.AsyncClient:
    retry_transport = RetryTransport(
        transport or httpx.AsyncHTTPTransport(),
        max_retries=config.max_retries,
        logger=LOGGER,
    )
    event_hooks = {"request": [], "response": []}
    if debug:
        event_hooks = {"request": [log_request], "response": [log_response]}
    return httpx.AsyncClient(
        timeout=config.http_timeout,
        transport=retry_transport,
        event_hooks=event_hooks,
    )
