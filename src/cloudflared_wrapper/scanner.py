"""Extracting the public tunnel URL from cloudflared output."""

import re
import threading

DEFAULT_URL_PATTERN = re.compile(r"https://[a-zA-Z0-9-]+\.trycloudflare\.com")


def decode_chunk(data: bytes) -> str | None:
    """Decode a chunk of process output, or None if it is not UTF-8 text."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def find_tunnel_url(text: str, pattern: re.Pattern[str] = DEFAULT_URL_PATTERN) -> str | None:
    """Return the first public tunnel URL in ``text``.

    Args:
        text: Decoded process output
        pattern: Compiled URL pattern (see SupervisorConfig.url_pattern())

    Returns:
        The matched URL without surrounding characters, or None
    """
    match = pattern.search(text)
    if match:
        return match.group(0)
    return None


class OutcomeClaim:
    """Single-use flag deciding who delivers a start attempt's outcome.

    The stdout reader, the stderr reader and the startup timeout all race for
    it; claim() is an indivisible test-and-set, so exactly one caller wins.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._owner: str | None = None

    def claim(self, owner: str) -> bool:
        """Take the slot for ``owner``. Returns True only for the first caller."""
        with self._lock:
            if self._owner is not None:
                return False
            self._owner = owner
            return True

    @property
    def claimed(self) -> bool:
        with self._lock:
            return self._owner is not None

    @property
    def owner(self) -> str | None:
        """Who delivered the outcome, or None while it is pending"""
        with self._lock:
            return self._owner
