"""
Point and geometry normalization for open data rows.

The portal encodes locations several ways depending on the dataset and
on when the row was published: plain latitude/longitude strings, WKT
"POINT (lon lat)" strings, GeoJSON-like objects, Socrata location
objects, and JSON-encoded geometry strings. Everything here is total:
malformed input yields None, never an exception.
"""

import json
import math
import re
from typing import Any, List, NamedTuple, Optional, Tuple

_NUMBER = r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?"
_POINT_RE = re.compile(rf"({_NUMBER})[\s,]+({_NUMBER})")

_LINE_TYPES = ("LineString", "MultiLineString", "Polygon", "MultiPolygon")


class Coordinates(NamedTuple):
    lat: float
    lon: float


def parse_geometry(value: Any) -> Optional[dict]:
    """Return a GeoJSON-like geometry dict, or None.

    Strings are decoded as JSON first. A geometry is any mapping with a
    "type" and a "coordinates" entry.
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (ValueError, TypeError):
            return None
    if isinstance(value, dict) and "type" in value and "coordinates" in value:
        return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def normalize_point(value: Any) -> Optional[Tuple[str, str]]:
    """Extract a (latitude, longitude) text pair from an unknown encoding.

    Values are returned as text, exactly as found upstream, so they can
    be displayed and used as cache keys without float round-tripping.
    Pairs that do not convert to finite floats are treated as absent.
    """
    if value is None:
        return None

    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("{"):
            try:
                return normalize_point(json.loads(stripped))
            except (ValueError, TypeError):
                return None
        match = _POINT_RE.search(stripped)
        if not match:
            return None
        # WKT order: longitude first
        return _usable(match.group(2), match.group(1))

    if isinstance(value, dict):
        coords = value.get("coordinates")
        if isinstance(coords, (list, tuple)) and len(coords) >= 2:
            lon, lat = _text(coords[0]), _text(coords[1])
            if isinstance(coords[0], (list, dict)):
                return None
            return _usable(lat, lon)
        return _usable(_text(value.get("latitude")), _text(value.get("longitude")))
    return None


def _usable(lat: Optional[str], lon: Optional[str]) -> Optional[Tuple[str, str]]:
    if lat is None or lon is None or to_coordinates(lat, lon) is None:
        return None
    return lat, lon


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def to_coordinates(lat: Any, lon: Any) -> Optional[Coordinates]:
    """Finite float coordinates, or None when either side is unusable."""
    flat, flon = _finite(lat), _finite(lon)
    if flat is None or flon is None:
        return None
    return Coordinates(flat, flon)


def _path(raw: Any, close: bool = False) -> List[Tuple[float, float]]:
    points = []
    if not isinstance(raw, (list, tuple)):
        return points
    for pair in raw:
        if not isinstance(pair, (list, tuple)) or len(pair) < 2:
            continue
        coords = to_coordinates(pair[1], pair[0])
        if coords is not None:
            points.append((coords.lon, coords.lat))
    if close and len(points) > 2 and points[0] != points[-1]:
        points.append(points[0])
    return points


def geometry_paths(geometry: Optional[dict]) -> List[List[Tuple[float, float]]]:
    """Flatten a line/polygon geometry into (lon, lat) paths for drawing.

    Polygon rings are closed. Parts with fewer than two usable points
    are dropped. Points and unknown types produce no paths.
    """
    if not isinstance(geometry, dict):
        return []
    gtype = geometry.get("type")
    coords = geometry.get("coordinates")
    if gtype not in _LINE_TYPES or not isinstance(coords, (list, tuple)):
        return []

    if gtype == "LineString":
        paths = [_path(coords)]
    elif gtype == "MultiLineString":
        paths = [_path(line) for line in coords]
    elif gtype == "Polygon":
        paths = [_path(ring, close=True) for ring in coords]
    else:
        paths = [
            _path(ring, close=True)
            for polygon in coords if isinstance(polygon, (list, tuple))
            for ring in polygon
        ]
    return [p for p in paths if len(p) >= 2]


def geometry_point(geometry: Optional[dict]) -> Optional[Tuple[str, str]]:
    """(latitude, longitude) text of a Point geometry, else None."""
    if isinstance(geometry, dict) and geometry.get("type") == "Point":
        return normalize_point(geometry)
    return None
