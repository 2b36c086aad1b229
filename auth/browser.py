"""Window and message-passing primitives for the popup login protocol.

A ``Window`` stands in for a browser tab or popup: it has an origin, a
tab-scoped storage area, an optional opener and a mailbox that receives
``post_message`` deliveries. ``BrowserHost`` opens popups and hands the
authorization URL to the user's real browser.
"""

from __future__ import annotations

import asyncio
import copy
import webbrowser
from dataclasses import dataclass

from auth.storage import MemoryStorage
from sendsecure.constants import LOGGER


@dataclass(frozen=True)
class MessageEvent:
    data: dict
    origin: str


@dataclass(frozen=True)
class ScreenSize:
    width: int = 1920
    height: int = 1080


class Window:
    def __init__(
        self,
        origin: str,
        *,
        location: str | None = None,
        opener: "Window | None" = None,
        name: str = "",
        session_storage: MemoryStorage | None = None,
        screen: ScreenSize | None = None,
    ) -> None:
        self.origin = origin
        self.location = location or f"{origin}/"
        self.opener = opener
        self.name = name
        self.session_storage = session_storage or MemoryStorage()
        self.screen = screen or ScreenSize()
        self.mailbox: asyncio.Queue[MessageEvent] = asyncio.Queue()
        self.history: list[str] = []
        self.closed = False

    def post_message(self, data: dict, target_origin: str, *, source: "Window") -> bool:
        """Queue ``data`` for this window if ``target_origin`` matches its origin."""
        if self.closed:
            return False
        if target_origin != self.origin:
            LOGGER.debug(
                "Dropping message for origin %s (window origin %s)", target_origin, self.origin
            )
            return False
        self.mailbox.put_nowait(MessageEvent(data=copy.deepcopy(data), origin=source.origin))
        return True

    def navigate(self, url: str) -> None:
        self.history.append(self.location)
        self.location = url

    def replace_location(self, url: str) -> None:
        self.location = url

    def close(self) -> None:
        self.closed = True


class BrowserHost:
    def __init__(self, *, launcher=webbrowser.open) -> None:
        self._launcher = launcher
        self._popups: dict[str, Window] = {}

    def open_popup(self, opener: Window, url: str, *, name: str, features: str) -> Window:
        previous = self._popups.get(name)
        if previous is not None:
            previous.close()

        # A new browsing context starts with a copy of its opener's session storage.
        popup = Window(
            opener.origin,
            location=url,
            opener=opener,
            name=name,
            session_storage=opener.session_storage.copy(),
            screen=opener.screen,
        )
        self._popups[name] = popup
        LOGGER.info("Opening popup %s (%s)", name, features)
        self._launcher(url, new=1)
        return popup

    def navigate(self, window: Window, url: str) -> None:
        window.navigate(url)

    def close_popup(self, name: str) -> None:
        popup = self._popups.pop(name, None)
        if popup is not None and not popup.closed:
            LOGGER.info("Closing popup %s", name)
            popup.close()

    def find_popup(self, name: str) -> Window | None:
        popup = self._popups.get(name)
        if popup is None or popup.closed:
            return None
        return popup
