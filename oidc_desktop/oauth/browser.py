"""Open the authorization URL in the system's default browser."""

import logging
import webbrowser
from typing import Callable

logger = logging.getLogger(__name__)

BrowserLauncher = Callable[[str], None]


def open_system_browser(url: str) -> None:
    """Open a URL in the default browser without waiting for the user.

    If no browser can be started the URL is logged so the user can open it
    manually.
    """
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as e:
        logger.warning(f"Could not start a browser: {e}")
        opened = False

    if not opened:
        logger.warning(f"Could not open browser. Please open this URL manually:\n{url}")
