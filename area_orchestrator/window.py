"""Authorization window handles.

An attempt owns exactly one window handle. The default opener hands the
URL to the system browser, which gives no way to observe the window
closing, so such handles only report closed once closed locally.
"""

from __future__ import annotations

import logging
import webbrowser
from typing import Protocol

_LOGGER = logging.getLogger(__name__)


class AuthWindow(Protocol):
    """A secondary window showing a provider authorization page."""

    @property
    def closed(self) -> bool:
        """Return True once the window is closed."""

    def close(self) -> None:
        """Close the window."""


class WindowOpener(Protocol):
    """Opens an authorization window, returning None when blocked.

    Called on a worker thread, so an implementation may block.
    """

    def __call__(self, url: str, name: str, features: str) -> AuthWindow | None:
        """Open ``url`` in a new window."""


class BrowserWindow:
    """Handle for a page opened in the system browser."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


def open_browser_window(url: str, name: str, features: str) -> BrowserWindow | None:
    """Open ``url`` in the system browser.

    Returns:
        A BrowserWindow, or None if no browser could be launched.

    """
    _LOGGER.debug("Opening %s (%s, %s)", name, url.split("?", 1)[0], features)
    if not webbrowser.open_new(url):
        _LOGGER.warning("No browser available to open %s", name)
        return None
    return BrowserWindow(url)
