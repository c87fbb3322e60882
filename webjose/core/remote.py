"""Remote key sets and certificate chains.

JWKS documents (``jku``) and PEM certificate chains (``x5u``) are fetched
through a ``fetch(uri) -> bytes`` callable and cached by URI for a bounded
time. The default fetcher uses ``requests``.
"""

import logging
import threading
import time
from typing import Any, Callable, TypeVar

import requests

from webjose.config import get_settings
from webjose.core.errors import RemoteResourceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_session: requests.Session | None = None
_session_lock = threading.Lock()


def _get_session() -> requests.Session:
    global _session
    with _session_lock:
        if _session is None:
            _session = requests.Session()
            _session.headers["User-Agent"] = get_settings().http_user_agent
        return _session


def http_get(uri: str) -> bytes:
    """Fetch a resource body.

    Raises:
        RemoteResourceError: On connection failure or a non-2xx response
    """
    settings = get_settings()
    logger.debug("Fetching %s", uri)
    try:
        response = _get_session().get(uri, timeout=settings.http_timeout_seconds)
        response.raise_for_status()
    except requests.RequestException as e:
        raise RemoteResourceError(f"Failed to fetch {uri}: {e}") from e
    return response.content


class TTLCache:
    """Thread-safe mapping whose entries expire after a fixed time."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._store: dict[Any, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Any) -> Any | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires, value = entry
            if self._clock() >= expires:
                del self._store[key]
                return None
            return value

    def put(self, key: Any, value: Any) -> None:
        with self._lock:
            self._store[key] = (self._clock() + self.ttl_seconds, value)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class RemoteResolver:
    """Loads and caches parsed remote resources by kind and URI."""

    def __init__(
        self,
        fetch: Callable[[str], bytes] | None = None,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds is None:
            ttl_seconds = get_settings().remote_cache_ttl_seconds
        self.fetch = fetch or http_get
        self.cache = TTLCache(ttl_seconds, clock)

    def load(self, kind: str, uri: str, parse: Callable[[bytes], T]) -> T:
        """Return the cached value for ``uri`` or fetch and parse it.

        Args:
            kind: Resource kind, keeps JWKS and certificate entries apart
            uri: Resource location
            parse: Converts the fetched body into the cached value

        Returns:
            The parsed resource
        """
        key = (kind, uri)
        value = self.cache.get(key)
        if value is not None:
            logger.debug("Cache hit for %s %s", kind, uri)
            return value
        logger.debug("Cache miss for %s %s", kind, uri)
        value = parse(self.fetch(uri))
        self.cache.put(key, value)
        return value


# Default resolver used by key and header resolution
resolver = RemoteResolver()
