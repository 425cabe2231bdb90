import json
import logging
import time
from collections import OrderedDict, deque
from typing import Any, Callable, Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()
INVALIDATION_HISTORY = 256


def _serialize(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)


def cache_key(operation: str, params: Dict[str, Any]) -> str:
    return f"{operation}:{_serialize(params)}"


def param_fragment(name: str, value: Any) -> str:
    """Substring that appears in every key built with ``name=value``.

    Matches the ``json.dumps`` separators used by ``cache_key`` so that
    invalidating user "U1" never touches keys for "U10".
    """
    return f'"{name}": {_serialize(value)}'


class QueryCache:
    """
    Process-local read cache for the data access layer.

    - fixed expiry window per entry (not sliding)
    - bounded size, oldest insertion evicted first
    - substring invalidation so a write only drops the reads it can affect
    - reads that started before a matching invalidation are not stored
    """

    def __init__(self, ttl_seconds: float = 60.0, max_entries: int = 100,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        # key -> (stored_at, value)
        self._items: "OrderedDict[str, Tuple[float, Any]]" = OrderedDict()
        self._generation = 0
        # (generation, fragments) of recent invalidations
        self._recent: Deque[Tuple[int, Tuple[str, ...]]] = deque(maxlen=INVALIDATION_HISTORY)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def generation(self) -> int:
        """Token to pass to ``set(since=...)`` for a read about to start."""
        return self._generation

    def _invalidated_since(self, key: str, since: int) -> bool:
        if since >= self._generation:
            return False
        if not self._recent or self._recent[0][0] > since + 1:
            # History no longer reaches back to ``since``.
            return True
        return any(gen > since and all(f in key for f in fragments) for gen, fragments in self._recent)

    def get(self, key: str, default: Any = None) -> Any:
        item = self._items.get(key)
        if item is None:
            return default
        stored_at, value = item
        if self._clock() - stored_at < self.ttl_seconds:
            logger.debug("Cache hit: %s", key)
            return value
        del self._items[key]
        return default

    def set(self, key: str, value: Any, since: Optional[int] = None) -> bool:
        """Store ``value``; refused when ``key`` was invalidated after generation ``since``."""
        if since is not None and self._invalidated_since(key, since):
            logger.debug("Cache store skipped, invalidated mid-read: %s", key)
            return False
        self._items.pop(key, None)
        self._items[key] = (self._clock(), value)
        while len(self._items) > self.max_entries:
            self._items.popitem(last=False)
        return True

    def invalidate(self, *fragments: str) -> int:
        """Drop every entry whose key contains all ``fragments``."""
        if not fragments:
            return 0
        self._generation += 1
        self._recent.append((self._generation, fragments))
        doomed = [key for key in self._items if all(f in key for f in fragments)]
        for key in doomed:
            del self._items[key]
        return len(doomed)

    def clear(self) -> None:
        self._generation += 1
        self._recent.append((self._generation, ("",)))
        self._items.clear()
        logger.info("Query cache cleared")

    def keys(self):
        return list(self._items.keys())
