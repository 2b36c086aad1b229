"""Scheduled, single-flight access token refresh.

One ``RefreshCoordinator`` is owned by each ``AuthContext``. The in-flight
refresh task is the only record that a refresh is running: concurrent callers
await that task instead of starting their own token request. A single timer
handle re-arms the next refresh ``REFRESH_BUFFER_MS`` before expiry; because
timers are unreliable while a client is suspended, ``on_visibility_change``
re-checks the stored expiry whenever the client becomes visible again.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import httpx

from auth import oauth_client
from auth.errors import RefreshFailed
from auth.models import Session
from auth.storage import SessionStore
from sendsecure.constants import LOGGER, REFRESH_BUFFER_MS
from sendsecure.env import AuthConfig


class RefreshCoordinator:
    def __init__(
        self,
        config: AuthConfig,
        *,
        sessions: SessionStore,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
        call_later=None,
        buffer_ms: int = REFRESH_BUFFER_MS,
        refresh_token_fn=oauth_client.refresh_access_token,
    ) -> None:
        self._config = config
        self._sessions = sessions
        self._client = client
        self._clock = clock
        self._call_later_fn = call_later
        self._buffer_ms = buffer_ms
        self._refresh_token_fn = refresh_token_fn

        self._inflight: asyncio.Task[bool] | None = None
        self._timer = None
        self._generation = 0
        self._background: set[asyncio.Task] = set()
        self._session_expired_listeners: list[Callable[[], None]] = []
        self._token_refreshed_listeners: list[Callable[[Session], None]] = []

        self.scheduled_delay_ms: int | None = None

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def is_refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def add_session_expired_listener(self, listener: Callable[[], None]) -> None:
        self._session_expired_listeners.append(listener)

    def add_token_refreshed_listener(self, listener: Callable[[Session], None]) -> None:
        self._token_refreshed_listeners.append(listener)

    # -- scheduling ------------------------------------------------------------

    async def schedule_refresh(self) -> int | None:
        """Arm the refresh timer; returns the delay in ms, 0 if refreshing now."""
        self.cancel_timer()

        session = await self._sessions.load()
        if session is None or session.expires_at is None:
            return None

        delay_ms = session.expires_at - self.now_ms() - self._buffer_ms
        if delay_ms <= 0:
            LOGGER.info("Access token expired or expiring soon; refreshing now")
            self._start_background_refresh()
            return 0

        LOGGER.info("Scheduling token refresh in %s seconds", round(delay_ms / 1000))
        self._timer = self._call_later(delay_ms / 1000, self._on_timer)
        self.scheduled_delay_ms = delay_ms
        return delay_ms

    def cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.scheduled_delay_ms = None

    async def on_visibility_change(self, visible: bool) -> None:
        if not visible:
            return

        session = await self._sessions.load()
        if session is None or session.expires_at is None:
            return

        if session.expires_at - self.now_ms() <= self._buffer_ms:
            LOGGER.info("Token expired or expiring soon, refreshing on visibility change")
            await self.refresh()
        else:
            # The timer may have drifted or been suspended while hidden.
            await self.schedule_refresh()

    def _call_later(self, delay_seconds: float, callback):
        if self._call_later_fn is not None:
            return self._call_later_fn(delay_seconds, callback)
        return asyncio.get_running_loop().call_later(delay_seconds, callback)

    def _on_timer(self) -> None:
        self._timer = None
        self.scheduled_delay_ms = None
        self._start_background_refresh()

    def _start_background_refresh(self) -> None:
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            LOGGER.error("Background token refresh crashed: %s", error, exc_info=error)

    async def wait_for_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- refresh ---------------------------------------------------------------

    async def refresh(self) -> bool:
        if self._inflight is None:
            task = asyncio.get_running_loop().create_task(self._refresh_once(self._generation))
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        # Shielded so one caller giving up does not cancel the shared request.
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _refresh_once(self, generation: int) -> bool:
        session = await self._sessions.load()
        if session is None or not session.refresh_token:
            LOGGER.info("No refresh token available")
            await self._expire_if_current(generation)
            return False

        try:
            tokens = await self._refresh_token_fn(
                self._config,
                session.refresh_token,
                client=self._client,
            )
        except RefreshFailed as error:
            LOGGER.error("Token refresh failed: %s", error)
            await self._expire_if_current(generation)
            return False
        except httpx.HTTPError as error:
            LOGGER.error("Token refresh error: %s", error)
            return False

        current = await self._sessions.load()
        if (
            generation != self._generation
            or current is None
            or current.access_token != session.access_token
        ):
            LOGGER.info("Discarding refreshed tokens; session changed during refresh")
            return False

        updated = session.with_tokens(tokens, now_ms=self.now_ms())
        await self._sessions.save(updated)
        LOGGER.info("Token refreshed successfully")

        for listener in list(self._token_refreshed_listeners):
            listener(updated)
        await self.schedule_refresh()
        return True

    async def _expire_if_current(self, generation: int) -> None:
        if generation != self._generation:
            return
        await self.expire_session()

    # -- teardown --------------------------------------------------------------

    async def expire_session(self) -> None:
        """Terminal failure: drop the session and tell the application."""
        self.cancel_timer()
        session = await self._sessions.load()
        await self._sessions.clear()
        if session is None:
            return

        LOGGER.warning("Session expired; cleared stored credentials")
        for listener in list(self._session_expired_listeners):
            listener()

    def cancel(self) -> None:
        """Drop the timer and detach any in-flight refresh (used by logout)."""
        self.cancel_timer()
        self._generation += 1
        self._inflight = None
