"""
Trail closure and traffic disruption records.

Raw rows from the two closure datasets share most of their meaning but
not their field names. Each dataset kind gets its own record class with
a table of which raw keys feed each unified field; normalize_row picks
the class by kind and everything downstream works on the unified shape.

Pipeline for one fetch cycle:
    raw rows -> normalize_rows -> dedupe_and_sort -> build_cards
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Dict, Iterable, List, Mapping, Optional, Tuple

from geometry import (
    Coordinates,
    geometry_point,
    normalize_point,
    parse_geometry,
    to_coordinates,
)
from neighbourhoods import NOT_AVAILABLE, coordinate_key

logger = logging.getLogger(__name__)

DETAILS_PREVIEW_CHARS = 220
ELLIPSIS = "…"
TITLE_SEPARATOR = " – "


class ClosureKind(str, Enum):
    TRAIL = "trail"
    TRAFFIC = "traffic"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ClosureKind":
        """Lenient lookup from a query-string value; unknown -> TRAIL."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.TRAIL

    @property
    def label(self) -> str:
        return "Trail & Park Closures" if self is ClosureKind.TRAIL else "Traffic Disruptions"


# =============================================================================
# Records
# =============================================================================

@dataclass(frozen=True)
class ClosureRecord:
    """Unified closure row. Every text field is optional."""
    activity_type: Optional[str] = None
    closure_type: Optional[str] = None
    long_text: Optional[str] = None       # details (trail) / description (traffic)
    infrastructure: Optional[str] = None
    location_name: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    duration: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    geometry: Optional[dict] = None

    kind: ClassVar[ClosureKind]
    # unified field -> raw keys, first non-empty wins
    FIELD_SOURCES: ClassVar[Dict[str, Tuple[str, ...]]] = {}
    POINT_SOURCES: ClassVar[Tuple[str, ...]] = ()
    GEOMETRY_SOURCES: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def from_raw(cls, raw: Mapping) -> "ClosureRecord":
        values = {
            name: _first_text(raw, keys) for name, keys in cls.FIELD_SOURCES.items()
        }

        geometry = None
        for key in cls.GEOMETRY_SOURCES:
            geometry = parse_geometry(raw.get(key))
            if geometry is not None:
                break

        lat, lon = values.pop("latitude", None), values.pop("longitude", None)
        if to_coordinates(lat, lon) is None:
            point = None
            for key in cls.POINT_SOURCES:
                point = normalize_point(raw.get(key))
                if point is not None:
                    break
            if point is None:
                point = geometry_point(geometry)
            if point is not None:
                lat, lon = point

        if geometry is not None and geometry.get("type") == "Point":
            geometry = None

        return cls(latitude=lat, longitude=lon, geometry=geometry, **values)

    @property
    def dedupe_key(self) -> str:
        return (self.long_text or "").strip().lower()

    @property
    def coordinates(self) -> Optional[Coordinates]:
        return to_coordinates(self.latitude, self.longitude)

    @property
    def coordinate_key(self) -> Optional[str]:
        if self.coordinates is None:
            return None
        return coordinate_key(self.latitude, self.longitude)

    @property
    def is_permanent(self) -> bool:
        return (self.closure_type or "").strip().lower() == "permanent"


@dataclass(frozen=True)
class TrailClosure(ClosureRecord):
    kind: ClassVar[ClosureKind] = ClosureKind.TRAIL
    FIELD_SOURCES: ClassVar[Dict[str, Tuple[str, ...]]] = {
        "activity_type": ("activity_type",),
        "closure_type": ("type_of_closure", "closure_type"),
        "long_text": ("details",),
        "infrastructure": ("infrastructure",),
        "location_name": ("location_name",),
        "start_date": ("start_date",),
        "end_date": ("end_date",),
        "duration": ("duration",),
        "latitude": ("latitude",),
        "longitude": ("longitude",),
    }
    POINT_SOURCES: ClassVar[Tuple[str, ...]] = ("point", "location", "geometry_point")
    GEOMETRY_SOURCES: ClassVar[Tuple[str, ...]] = ("geometry", "the_geom", "geometry_line")

    @property
    def details(self) -> Optional[str]:
        return self.long_text


@dataclass(frozen=True)
class TrafficDisruption(ClosureRecord):
    kind: ClassVar[ClosureKind] = ClosureKind.TRAFFIC
    FIELD_SOURCES: ClassVar[Dict[str, Tuple[str, ...]]] = {
        "activity_type": ("activity_type", "disruption_type"),
        "closure_type": ("closure_type", "impact"),
        "long_text": ("description",),
        "infrastructure": ("infrastructure", "road_name"),
        "location_name": ("location_name", "location_description"),
        "start_date": ("start_date", "starting_date"),
        "end_date": ("end_date", "finish_date"),
        "duration": ("duration",),
        "latitude": ("latitude",),
        "longitude": ("longitude",),
    }
    POINT_SOURCES: ClassVar[Tuple[str, ...]] = ("point", "location")
    GEOMETRY_SOURCES: ClassVar[Tuple[str, ...]] = ("geometry", "the_geom", "geometry_line")

    @property
    def description(self) -> Optional[str]:
        return self.long_text


RECORD_CLASSES = {
    ClosureKind.TRAIL: TrailClosure,
    ClosureKind.TRAFFIC: TrafficDisruption,
}


def _first_text(raw: Mapping, keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = raw.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def normalize_row(kind: ClosureKind, raw: Mapping) -> ClosureRecord:
    return RECORD_CLASSES[kind].from_raw(raw)


def normalize_rows(kind: ClosureKind, rows: Iterable[Mapping]) -> List[ClosureRecord]:
    records = []
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        records.append(normalize_row(kind, row))
    return records


def dedupe_and_sort(records: Iterable[ClosureRecord]) -> List[ClosureRecord]:
    """Collapse rows with the same long text, then sort on it.

    The datasets expose no stable identifier, so the normalized long
    text stands in for one. First occurrence wins; sorted() is stable.
    """
    seen = set()
    unique = []
    for record in records:
        key = record.dedupe_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return sorted(unique, key=lambda r: r.dedupe_key)


# =============================================================================
# Presentation
# =============================================================================

def format_date(raw: Optional[str]) -> str:
    """YYYY/MM/DD for ISO timestamps, the raw text otherwise."""
    if not raw:
        return NOT_AVAILABLE
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return raw
    return parsed.strftime("%Y/%m/%d")


def end_date_display(record: ClosureRecord) -> str:
    """An explicit end date is never shown; the free-text duration is."""
    if record.end_date:
        return NOT_AVAILABLE
    return record.duration or NOT_AVAILABLE


def truncate_text(text: str, limit: int = DETAILS_PREVIEW_CHARS) -> Tuple[str, bool]:
    if len(text) <= limit:
        return text, False
    return text[:limit] + ELLIPSIS, True


def closure_title(record: ClosureRecord, neighbourhood: Optional[str] = None) -> str:
    infrastructure = record.infrastructure or "Infrastructure"
    location = record.location_name or neighbourhood or NOT_AVAILABLE
    return f"{infrastructure}{TITLE_SEPARATOR}{location}"


@dataclass(frozen=True)
class ClosureCard:
    """Everything a template needs to draw one closure card."""
    index: int
    title: str
    activity_type: str
    closure_type: str
    infrastructure: str
    start_date: str
    end_date: str
    text: str
    full_text: str
    truncated: bool
    expanded: bool
    toggle_key: str
    permanent: bool
    has_preview: bool

    @property
    def anchor(self) -> str:
        return f"card-{self.index}"


def toggle_key(title: str, start_date: Optional[str], index: int) -> str:
    return f"{title}|{start_date or ''}|{index}"


def build_card(
    record: ClosureRecord,
    index: int,
    neighbourhoods: Mapping[str, str],
    expanded: Iterable[str] = (),
) -> ClosureCard:
    key = record.coordinate_key
    neighbourhood = neighbourhoods.get(key) if key else None
    title = closure_title(record, neighbourhood)
    tkey = toggle_key(title, record.start_date, index)

    full_text = record.long_text or NOT_AVAILABLE
    preview, truncated = truncate_text(full_text)
    is_expanded = truncated and tkey in expanded

    return ClosureCard(
        index=index,
        title=title,
        activity_type=record.activity_type or NOT_AVAILABLE,
        closure_type=record.closure_type or NOT_AVAILABLE,
        infrastructure=record.infrastructure or NOT_AVAILABLE,
        start_date=format_date(record.start_date),
        end_date=end_date_display(record),
        text=full_text if is_expanded else preview,
        full_text=full_text,
        truncated=truncated,
        expanded=is_expanded,
        toggle_key=tkey,
        permanent=record.is_permanent,
        has_preview=record.geometry is not None or record.coordinates is not None,
    )


def build_cards(
    records: Iterable[ClosureRecord],
    neighbourhoods: Mapping[str, str],
    expanded: Iterable[str] = (),
) -> List[ClosureCard]:
    expanded = frozenset(expanded)
    return [
        build_card(record, i, neighbourhoods, expanded)
        for i, record in enumerate(records)
    ]
