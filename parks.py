"""
Park directory: parse the parks dataset and filter it for display.

Parks are fetched once per request from the portal (the same payload the
/api/parks proxy returns), parsed into Park objects, then narrowed by
the directory filters. Distance to the visitor is derived per filter
pass and never stored back on the parsed list.
"""

import math
from dataclasses import dataclass, replace
from typing import Any, Iterable, List, Optional, Sequence

from geometry import Coordinates, to_coordinates

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class Park:
    id: int
    official_name: str = ""
    common_name: str = ""
    status: str = ""
    type: str = ""
    park_class: str = ""
    address: str = ""
    area_sq_m: float = 0.0
    longitude: Optional[float] = None
    latitude: Optional[float] = None
    distance_km: Optional[float] = None

    @property
    def display_name(self) -> str:
        return self.common_name or self.official_name

    @property
    def coordinates(self) -> Optional[Coordinates]:
        return to_coordinates(self.latitude, self.longitude)


def _number(value: Any, default: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _park_id(value: Any, index: int) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return index
    if not math.isfinite(number):
        return index
    return int(number)


def parse_park(item: dict, index: int) -> Park:
    coords = to_coordinates(item.get("latitude"), item.get("longitude"))
    return Park(
        id=_park_id(item.get("id"), index),
        official_name=str(item.get("official_name") or ""),
        common_name=str(item.get("common_name") or ""),
        status=str(item.get("status") or "").lower(),
        type=str(item.get("type") or ""),
        park_class=str(item.get("class") or ""),
        address=str(item.get("address") or ""),
        area_sq_m=_number(item.get("area")),
        latitude=coords.lat if coords else None,
        longitude=coords.lon if coords else None,
    )


def parse_parks(raw: Any) -> List[Park]:
    """Parse the raw parks payload. Anything but a JSON array gives []."""
    if not isinstance(raw, list):
        return []
    return [
        parse_park(item, index)
        for index, item in enumerate(raw)
        if isinstance(item, dict)
    ]


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    lat1, lon1, lat2, lon2 = map(math.radians, (a.lat, a.lon, b.lat, b.lon))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))


def filter_parks(
    parks: Iterable[Park],
    search: str = "",
    active_only: bool = False,
    park_class: str = "",
    user: Optional[Coordinates] = None,
    sort_near: bool = False,
) -> List[Park]:
    term = (search or "").strip().lower()
    result = []
    for park in parks:
        if term and term not in park.official_name.lower() and term not in park.common_name.lower():
            continue
        if active_only and park.status != "active":
            continue
        if park_class and park.park_class != park_class:
            continue
        result.append(park)

    if user is None:
        return result

    with_distance = []
    for park in result:
        coords = park.coordinates
        distance = haversine_km(user, coords) if coords else None
        with_distance.append(replace(park, distance_km=distance))

    if sort_near:
        # parks with no location go last
        with_distance.sort(
            key=lambda p: (p.distance_km is None, p.distance_km or 0.0)
        )
    return with_distance


def sort_by_name(parks: Iterable[Park]) -> List[Park]:
    return sorted(parks, key=lambda p: p.display_name.lower())


def unique_classes(parks: Sequence[Park]) -> List[str]:
    return list(dict.fromkeys(p.park_class for p in parks if p.park_class))


def find_park(parks: Iterable[Park], park_id: Optional[int]) -> Optional[Park]:
    if park_id is None:
        return None
    for park in parks:
        if park.id == park_id:
            return park
    return None
