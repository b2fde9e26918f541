"""
Closure browsing state: one reducer, explicit events, generation counter.

A ClosureBrowser owns the state for one visitor. Every change goes
through reduce(), so ordering is auditable:

    DatasetSelected(kind, generation)   start a new fetch cycle
    FetchSucceeded(generation, records) rows arrived for that cycle
    FetchFailed(generation, error)      fetch for that cycle failed
    GeocodeResolved(generation, names)  neighbourhood names joined in
    DetailsToggled(key, generation)     expand/collapse one card

Fetch, geocode and toggle events carry the generation of the selection
that started them, or of the page a toggle was posted from. The reducer
drops any whose generation is not the current one, so a slow response
for a superseded selection can never overwrite a newer one, and a card
toggle from a stale page cannot flip a card in the current list. HTTP
calls already in flight still finish; only their results are ignored.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from closures import (
    ClosureCard,
    ClosureKind,
    ClosureRecord,
    build_cards,
    dedupe_and_sort,
    normalize_rows,
)
from neighbourhoods import NeighbourhoodResolver
from opendata import OpenDataClient, OpenDataError

logger = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_LOADING = "loading"
STATUS_LOADED = "loaded"
STATUS_FAILED = "failed"


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class DatasetSelected:
    kind: ClosureKind
    generation: int


@dataclass(frozen=True)
class FetchSucceeded:
    generation: int
    records: Tuple[ClosureRecord, ...]


@dataclass(frozen=True)
class FetchFailed:
    generation: int
    error: str


@dataclass(frozen=True)
class GeocodeResolved:
    generation: int
    names: Mapping[str, str]


@dataclass(frozen=True)
class DetailsToggled:
    key: str
    generation: int


Event = Union[DatasetSelected, FetchSucceeded, FetchFailed, GeocodeResolved, DetailsToggled]
_EVENT_TYPES = (DatasetSelected, FetchSucceeded, FetchFailed, GeocodeResolved, DetailsToggled)


@dataclass(frozen=True)
class ClosureState:
    kind: ClosureKind = ClosureKind.TRAIL
    generation: int = 0
    status: str = STATUS_IDLE
    records: Tuple[ClosureRecord, ...] = ()
    neighbourhoods: Mapping[str, str] = field(default_factory=dict)
    expanded: FrozenSet[str] = frozenset()
    error: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self.status == STATUS_LOADED

    def cards(self) -> List[ClosureCard]:
        return build_cards(self.records, self.neighbourhoods, self.expanded)


def reduce(state: ClosureState, event: Event) -> ClosureState:
    """Apply one event. Pure; returns the same object when nothing changes."""
    if not isinstance(event, _EVENT_TYPES):
        raise TypeError(f"Unknown event {event!r}")

    if isinstance(event, DatasetSelected):
        if event.generation <= state.generation:
            return state
        return ClosureState(
            kind=event.kind,
            generation=event.generation,
            status=STATUS_LOADING,
        )

    if event.generation != state.generation:
        logger.debug(
            "Dropping %s for generation %d (current %d)",
            type(event).__name__, event.generation, state.generation,
        )
        return state

    if isinstance(event, FetchSucceeded):
        return replace(
            state, status=STATUS_LOADED, records=tuple(event.records), error=None
        )

    if isinstance(event, FetchFailed):
        return replace(state, status=STATUS_FAILED, records=(), error=event.error)

    if isinstance(event, DetailsToggled):
        return replace(state, expanded=state.expanded ^ {event.key})

    # GeocodeResolved
    merged = dict(state.neighbourhoods)
    merged.update(event.names)
    return replace(state, neighbourhoods=merged)


# =============================================================================
# Browser
# =============================================================================

class ClosureBrowser:
    """Runs fetch cycles for one visitor and holds the resulting state."""

    def __init__(
        self,
        client: OpenDataClient,
        resolver: NeighbourhoodResolver,
        lookups_per_cycle: Optional[int] = None,
    ):
        self.client = client
        self.resolver = resolver
        if lookups_per_cycle is None:
            lookups_per_cycle = client.config.geocode_lookups_per_cycle
        self.lookups_per_cycle = lookups_per_cycle
        self._lock = threading.Lock()
        self._state = ClosureState()
        self._last_generation = 0

    @property
    def state(self) -> ClosureState:
        with self._lock:
            return self._state

    def dispatch(self, event: Event) -> ClosureState:
        with self._lock:
            self._state = reduce(self._state, event)
            return self._state

    def _fetcher(self, kind: ClosureKind) -> Callable[[], List[dict]]:
        if kind is ClosureKind.TRAFFIC:
            return self.client.fetch_traffic_disruptions
        return self.client.fetch_trail_closures

    def select(self, kind: ClosureKind) -> int:
        """Start a new cycle for `kind` and return its generation."""
        with self._lock:
            self._last_generation += 1
            generation = self._last_generation
            self._state = reduce(self._state, DatasetSelected(kind, generation))
        return generation

    def load(self, kind: ClosureKind, force: bool = False) -> ClosureState:
        """Fetch, normalize, dedupe, sort and geocode one dataset.

        Reuses the current state when the same kind is already loaded
        and `force` is not set. Failures never raise: they end the cycle
        in the failed state with no records.
        """
        current = self.state
        if not force and current.kind is kind and current.is_loaded:
            return current

        generation = self.select(kind)
        try:
            raw = self._fetcher(kind)()
        except OpenDataError as e:
            logger.warning("Failed to load %s closures: %s", kind.value, e)
            return self.dispatch(FetchFailed(generation, str(e)))

        records = dedupe_and_sort(normalize_rows(kind, raw))
        logger.info(
            "Loaded %d %s closure row(s), %d after dedupe",
            len(raw), kind.value, len(records),
        )
        state = self.dispatch(FetchSucceeded(generation, tuple(records)))
        if state.generation != generation:
            return state

        return self.dispatch(GeocodeResolved(generation, self._resolve_names(records)))

    def _resolve_names(self, records: List[ClosureRecord]) -> Dict[str, str]:
        keys = [
            r.coordinate_key for r in records
            if not r.location_name and r.coordinate_key is not None
        ]
        if not keys:
            return {}
        return self.resolver.resolve_many(keys, limit=self.lookups_per_cycle)

    def toggle(self, key: str, generation: int) -> ClosureState:
        """Flip one card. Toggles posted from an older cycle are dropped."""
        return self.dispatch(DetailsToggled(key, generation))

    def record_at(self, kind: ClosureKind, index: int) -> Optional[ClosureRecord]:
        state = self.state
        if state.kind is not kind or not 0 <= index < len(state.records):
            return None
        return state.records[index]


class ClosureBrowserStore:
    """Bounded LRU of per-visitor browsers sharing one client and cache."""

    def __init__(self, factory: Callable[[], ClosureBrowser], max_visitors: int = 500):
        self._factory = factory
        self._max = max_visitors
        self._lock = threading.Lock()
        self._browsers: "OrderedDict[str, ClosureBrowser]" = OrderedDict()

    def get(self, visitor_id: str) -> ClosureBrowser:
        with self._lock:
            browser = self._browsers.get(visitor_id)
            if browser is None:
                browser = self._factory()
                self._browsers[visitor_id] = browser
            self._browsers.move_to_end(visitor_id)
            while len(self._browsers) > self._max:
                self._browsers.popitem(last=False)
            return browser

    def clear(self) -> None:
        with self._lock:
            self._browsers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._browsers)
