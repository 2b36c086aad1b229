"""Delivery of the callback result back to the window that started login.

Popup flow: the popup posts ``AUTH_SUCCESS``/``AUTH_ERROR`` to its opener,
addressed to its own origin, and closes. The opener's ``AuthMessageListener``
ignores anything whose origin is not its own. Redirect flow (no opener): the
callback window stores the session itself and moves to the app root with the
``code``/``state`` parameters removed, so reloading cannot replay the exchange.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from auth.browser import MessageEvent, Window
from auth.errors import AuthError
from auth.models import (
    AuthErrorMessage,
    AuthSuccessMessage,
    CallbackResult,
    Session,
    View,
    parse_auth_message,
)
from auth.refresh import RefreshCoordinator
from auth.storage import PendingAttemptStore, SessionStore
from auth.urls import append_query_params, strip_query_params
from sendsecure.constants import LOGGER

CALLBACK_PARAMS = ("code", "state")


@dataclass
class CallbackOutcome:
    view: View
    delivered_to_opener: bool = False
    session: Session | None = None
    error: str | None = None
    location: str | None = None


class CrossWindowMessenger:
    def __init__(
        self,
        window: Window,
        *,
        sessions: SessionStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._window = window
        self._sessions = sessions
        self._clock = clock

    async def deliver_success(self, result: CallbackResult) -> CallbackOutcome:
        if self._window.opener is not None:
            self._post_to_opener(AuthSuccessMessage.from_result(result).to_payload())
            return CallbackOutcome(view=View.CALLBACK, delivered_to_opener=True)

        session = Session.from_callback(result, now_ms=int(self._clock() * 1000))
        await self._sessions.save(session)
        location = strip_query_params(self._window.location, CALLBACK_PARAMS, path="/")
        self._window.replace_location(location)
        return CallbackOutcome(view=View.DASHBOARD, session=session, location=location)

    async def deliver_error(self, error: AuthError) -> CallbackOutcome:
        message = str(error)
        if self._window.opener is not None:
            self._post_to_opener(AuthErrorMessage(error=message).to_payload())
            return CallbackOutcome(view=View.CALLBACK, delivered_to_opener=True, error=message)

        location = append_query_params(f"{self._window.origin}/", {"error": message})
        self._window.replace_location(location)
        return CallbackOutcome(view=View.LOGIN, error=message, location=location)

    def _post_to_opener(self, payload: dict) -> None:
        delivered = self._window.opener.post_message(
            payload,
            self._window.origin,
            source=self._window,
        )
        if not delivered:
            LOGGER.warning("Opener window did not accept the auth result")
        self._window.close()


class AuthMessageListener:
    def __init__(
        self,
        window: Window,
        *,
        sessions: SessionStore,
        pending: PendingAttemptStore,
        coordinator: RefreshCoordinator,
    ) -> None:
        self._window = window
        self._sessions = sessions
        self._pending = pending
        self._coordinator = coordinator
        self._login_listeners: list[Callable[[Session], None]] = []
        self._error_listeners: list[Callable[[str], None]] = []

    def add_login_listener(self, listener: Callable[[Session], None]) -> None:
        self._login_listeners.append(listener)

    def add_error_listener(self, listener: Callable[[str], None]) -> None:
        self._error_listeners.append(listener)

    async def handle(self, event: MessageEvent) -> bool:
        if event.origin != self._window.origin:
            LOGGER.debug("Ignoring message from unexpected origin %s", event.origin)
            return False

        message = parse_auth_message(event.data)
        if message is None:
            return False

        # The popup consumed its copy; drop ours so it cannot be replayed either.
        await self._pending.clear()

        if isinstance(message, AuthErrorMessage):
            LOGGER.warning("Authentication failed: %s", message.error)
            for listener in list(self._error_listeners):
                listener(message.error)
            return True

        self._coordinator.cancel()
        session = message.to_session(now_ms=self._coordinator.now_ms())
        await self._sessions.save(session)
        await self._coordinator.schedule_refresh()
        LOGGER.info("Login completed for sub=%s", session.user.sub)
        for listener in list(self._login_listeners):
            listener(session)
        return True

    async def drain(self) -> int:
        handled = 0
        while not self._window.mailbox.empty():
            event = self._window.mailbox.get_nowait()
            if await self.handle(event):
                handled += 1
        return handled

    async def listen(self) -> None:
        while True:
            event = await self._window.mailbox.get()
            await self.handle(event)
