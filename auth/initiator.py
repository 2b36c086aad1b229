from __future__ import annotations

from auth.browser import BrowserHost, Window
from auth.models import PendingAuthAttempt
from auth.pkce import generate_pkce_material
from auth.storage import PendingAttemptStore
from auth.urls import build_authorize_url
from sendsecure.constants import LOGGER, POPUP_HEIGHT, POPUP_NAME, POPUP_WIDTH
from sendsecure.env import AuthConfig

LOGIN_MODES = ("redirect", "popup")


def popup_features(window: Window, *, width: int = POPUP_WIDTH, height: int = POPUP_HEIGHT) -> str:
    left = window.screen.width // 2 - width // 2
    top = window.screen.height // 2 - height // 2
    return (
        f"width={width},height={height},top={top},left={left},"
        "resizable=yes,scrollbars=yes,status=yes"
    )


class AuthorizationInitiator:
    def __init__(
        self,
        config: AuthConfig,
        *,
        window: Window,
        pending: PendingAttemptStore,
        host: BrowserHost,
    ) -> None:
        self._config = config
        self._window = window
        self._pending = pending
        self._host = host

    async def initiate(self, mode: str = "popup") -> None:
        if mode not in LOGIN_MODES:
            raise ValueError(f"Unsupported login mode {mode!r}; expected one of {LOGIN_MODES}.")

        # A verifier left over from an abandoned attempt must never be reused.
        await self._pending.clear()

        material = generate_pkce_material()
        await self._pending.save(
            PendingAuthAttempt(code_verifier=material.code_verifier, state=material.state)
        )
        url = build_authorize_url(
            self._config,
            state=material.state,
            code_challenge=material.code_challenge,
        )

        LOGGER.info("Starting %s login against %s", mode, self._config.auth_server)
        if mode == "popup":
            self._host.open_popup(
                self._window,
                url,
                name=POPUP_NAME,
                features=popup_features(self._window),
            )
        else:
            # A popup left open by an earlier attempt still holds that attempt's verifier.
            self._host.close_popup(POPUP_NAME)
            self._host.navigate(self._window, url)
