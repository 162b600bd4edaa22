"""Exception classes shared by the poller, extractor, coordinator and cache."""
from __future__ import annotations

from typing import Optional


class CounterwatchError(Exception):
    """Base exception for counterwatch."""

    transient = False


# -----------------------
# Local client
# -----------------------
class ClientUnavailable(CounterwatchError):
    """Lockfile missing/unreadable or the local client API is unreachable."""

    transient = True


class AuthInvalid(CounterwatchError):
    """The local client rejected our credentials (stale lockfile)."""


class LcuHttpError(CounterwatchError):
    """Non-auth, non-2xx answer from the local client (e.g. 404 outside champ select)."""

    def __init__(self, status: int, path: str):
        super().__init__(f"LCU HTTP {status} for {path}")
        self.status = status
        self.path = path


# -----------------------
# Extraction
# -----------------------
class ExtractionError(CounterwatchError):
    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class ExtractionNotFound(ExtractionError):
    """Page parsed, but the matchup table node is not there."""


class MalformedPayload(ExtractionError):
    """Body has no usable hydration payload (truncated or format drift)."""


class HttpStatusError(ExtractionError):
    def __init__(self, status: int, url: str = ""):
        super().__init__(f"HTTP {status} for {url}", url)
        self.status = status


class NetworkTransient(ExtractionError):
    transient = True


class RequestTimeout(NetworkTransient):
    pass


class ConnectionFailed(NetworkTransient):
    pass


class ServerError(NetworkTransient):
    def __init__(self, status: int, url: str = ""):
        super().__init__(f"HTTP {status} for {url}", url)
        self.status = status


class RateLimited(NetworkTransient):
    def __init__(self, url: str = "", retry_after: Optional[float] = None):
        super().__init__(f"HTTP 429 for {url}", url)
        self.status = 429
        self.retry_after = retry_after


# -----------------------
# Cache / coordination
# -----------------------
class CacheCorrupt(CounterwatchError):
    """On-disk cache document could not be decoded."""


class RefreshAlreadyRunning(CounterwatchError):
    pass


class InvalidTransition(RuntimeError):
    """Session state machine was handed something that is not a session state."""
