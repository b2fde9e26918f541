"""
Reverse geocoding of closure coordinates to neighbourhood names.

Closure rows often carry coordinates but no location name. The resolver
asks the neighbourhood-boundary dataset which neighbourhood lies within
a small radius of the point, trying each boundary geometry column in
turn, and memoizes the answer in a NeighbourhoodCache.

The cache never expires. A lookup that fails (network error or no rows
from either column) is stored as "N/A" exactly like a real name, so a
transient outage pins that coordinate to "N/A" for the life of the
process. The cache remembers which entries came from failures
(failed_keys) but nothing retries them yet.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Optional

from opendata import OpenDataClient, OpenDataError

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "N/A"

MAX_WORKERS = 8


def coordinate_key(lat: str, lon: str) -> str:
    """Cache key: the literal coordinate text, not a rounded float."""
    return f"{lat},{lon}"


class NeighbourhoodCache:
    """Thread-safe memo of coordinate key -> neighbourhood name."""

    def __init__(self):
        self._lock = threading.Lock()
        self._names: Dict[str, str] = {}
        self._failed: set = set()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._names.get(key)

    def set(self, key: str, name: str, failed: bool = False) -> None:
        with self._lock:
            self._names[key] = name
            if failed:
                self._failed.add(key)
            else:
                self._failed.discard(key)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    def failed_keys(self) -> List[str]:
        """Keys cached as "N/A" because every lookup came back empty or errored."""
        with self._lock:
            return sorted(self._failed)

    def clear(self) -> None:
        with self._lock:
            self._names.clear()
            self._failed.clear()


class NeighbourhoodResolver:
    def __init__(self, client: OpenDataClient, cache: NeighbourhoodCache):
        self.client = client
        self.cache = cache

    def resolve(self, lat: str, lon: str) -> str:
        """Neighbourhood name for (lat, lon), or "N/A".

        Cache hits never touch the network. On a miss, each boundary
        column is queried in order and the first non-empty name wins.
        """
        key = coordinate_key(lat, lon)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        for column in self.client.config.neighbourhood_columns:
            try:
                name = self.client.find_neighbourhood(lat, lon, column)
            except OpenDataError as e:
                logger.info(
                    "Neighbourhood lookup failed for %s on %s: %s", key, column, e
                )
                continue
            if name:
                self.cache.set(key, name)
                return name

        self.cache.set(key, NOT_AVAILABLE, failed=True)
        return NOT_AVAILABLE

    def resolve_many(self, keys: Iterable[str], limit: int) -> Dict[str, str]:
        """Names for every already-cached key plus up to `limit` new ones.

        New keys are looked up concurrently and joined before returning.
        Keys past the limit are left out of the result and will be picked
        up by a later cycle.
        """
        names: Dict[str, str] = {}
        pending: List[str] = []
        for key in dict.fromkeys(keys):
            cached = self.cache.get(key)
            if cached is not None:
                names[key] = cached
            elif len(pending) < limit:
                pending.append(key)

        if not pending:
            return names

        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(pending))) as pool:
            futures = {
                pool.submit(self.resolve, *key.split(",", 1)): key
                for key in pending
            }
            for future in as_completed(futures):
                key = futures[future]
                try:
                    names[key] = future.result()
                except Exception:
                    logger.warning(
                        "Unexpected error resolving neighbourhood for %s",
                        key, exc_info=True,
                    )
        logger.info(
            "Resolved %d neighbourhood(s), %d cached entries total",
            len(pending), len(self.cache),
        )
        return names
