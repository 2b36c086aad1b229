from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping

import httpx

from auth import oauth_client
from auth.browser import BrowserHost, ScreenSize, Window
from auth.callback import CallbackExchanger
from auth.errors import AuthError
from auth.fetch import AuthenticatedClient
from auth.initiator import AuthorizationInitiator
from auth.messenger import AuthMessageListener, CallbackOutcome, CrossWindowMessenger
from auth.models import Session, User, View
from auth.refresh import RefreshCoordinator
from auth.storage import FileStorage, KeyValueStorage, PendingAttemptStore, SessionStore
from sendsecure.constants import LOGGER, POPUP_NAME
from sendsecure.env import AuthConfig


class AuthContext:
    """Auth state owned by one client instance (the equivalent of a browser tab).

    Contexts sharing ``shared_storage`` see each other's sessions only when
    they (re)start; in-memory state such as ``user`` and ``view`` is not
    pushed between them.
    """

    def __init__(
        self,
        config: AuthConfig,
        *,
        shared_storage: KeyValueStorage | None = None,
        host: BrowserHost | None = None,
        client: httpx.AsyncClient | None = None,
        clock=time.time,
        call_later=None,
        screen: ScreenSize | None = None,
    ) -> None:
        self.config = config
        self.host = host or BrowserHost()
        self.window = Window(config.origin, screen=screen)
        self.client = client or httpx.AsyncClient(timeout=config.http_timeout)
        self._own_client = client is None
        self._clock = clock

        self.sessions = SessionStore(shared_storage or FileStorage(config.session_path))
        self.pending = PendingAttemptStore(self.window.session_storage)
        self.coordinator = RefreshCoordinator(
            config,
            sessions=self.sessions,
            client=self.client,
            clock=clock,
            call_later=call_later,
        )
        self.initiator = AuthorizationInitiator(
            config,
            window=self.window,
            pending=self.pending,
            host=self.host,
        )
        self.api = AuthenticatedClient(
            sessions=self.sessions,
            coordinator=self.coordinator,
            client=self.client,
        )
        self.listener = AuthMessageListener(
            self.window,
            sessions=self.sessions,
            pending=self.pending,
            coordinator=self.coordinator,
        )

        self.view = View.LOGIN
        self.user: User | None = None
        self.last_error: str | None = None
        self._listen_task: asyncio.Task | None = None

        self.coordinator.add_session_expired_listener(self._on_session_expired)
        self.listener.add_login_listener(self._on_login)
        self.listener.add_error_listener(self._on_login_error)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    async def start(self) -> None:
        session = await self.sessions.load()
        if session is not None:
            self._on_login(session)
            await self.coordinator.schedule_refresh()
        self._listen_task = asyncio.get_running_loop().create_task(self.listener.listen())

    async def stop(self) -> None:
        self.coordinator.cancel()
        if self._listen_task is not None:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None
        if self._own_client:
            await self.client.aclose()

    async def login(self, mode: str = "popup") -> None:
        self.last_error = None
        await self.initiator.initiate(mode)

    def callback_window(self) -> Window:
        return self.host.find_popup(POPUP_NAME) or self.window

    async def complete_callback(
        self,
        url: str,
        query_params: Mapping[str, str],
        *,
        window: Window | None = None,
    ) -> CallbackOutcome:
        window = window or self.callback_window()
        window.replace_location(url)
        if window is self.window:
            self.view = View.CALLBACK

        exchanger = CallbackExchanger(
            self.config,
            pending=PendingAttemptStore(window.session_storage),
            client=self.client,
        )
        messenger = CrossWindowMessenger(window, sessions=self.sessions, clock=self._clock)

        try:
            result = await exchanger.handle_callback(query_params)
        except AuthError as error:
            LOGGER.error("Auth callback error: %s", error)
            outcome = await messenger.deliver_error(error)
        else:
            outcome = await messenger.deliver_success(result)

        if not outcome.delivered_to_opener:
            if outcome.session is not None:
                self.coordinator.cancel()
                self._on_login(outcome.session)
                await self.coordinator.schedule_refresh()
            else:
                self.view = View.LOGIN
                self._on_login_error(outcome.error or "Login failed")
        return outcome

    async def logout(self) -> None:
        session = await self.sessions.load()
        self.coordinator.cancel()
        try:
            if session is not None:
                await oauth_client.revoke_token(
                    self.config,
                    session.access_token,
                    client=self.client,
                )
        except (httpx.HTTPError, RuntimeError) as error:
            LOGGER.warning("Logout revoke failed: %s", error)
        finally:
            await self.sessions.clear()
            await self.pending.clear()
            self.user = None
            self.view = View.LOGIN
        LOGGER.info("Logged out")

    async def on_visibility_change(self, visible: bool) -> None:
        if self.is_authenticated:
            await self.coordinator.on_visibility_change(visible)

    def _on_login(self, session: Session) -> None:
        self.user = session.user
        self.view = View.DASHBOARD
        self.last_error = None

    def _on_login_error(self, error: str) -> None:
        self.last_error = error

    def _on_session_expired(self) -> None:
        LOGGER.info("Session expired; returning to login")
        self.user = None
        self.view = View.LOGIN
