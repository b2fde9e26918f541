"""Server-side map images using staticmap + OSM tiles.

Two kinds of map:
  - closure previews: a small card image showing either the closure's
    line/polygon outline (bounds fitted to it) or a single marker;
  - the park map: every listed park as a marker, the selected park
    and the visitor's location emphasized.
"""

import io
import logging
from typing import Iterable, Optional

from staticmap import StaticMap, CircleMarker, Line

from closures import ClosureRecord
from geometry import Coordinates, geometry_paths
from parks import Park
from portal_config import CITY_CENTER

logger = logging.getLogger(__name__)


class CityTrailsStaticMap(StaticMap):
    """StaticMap with zoom clamped to [10, 17]; city-wide to street level."""

    ZOOM_MIN = 10
    ZOOM_MAX = 17

    def _calculate_zoom(self):
        z = super()._calculate_zoom()
        return max(self.ZOOM_MIN, min(self.ZOOM_MAX, z))


USER_AGENT = "CityTrails/1.0 (Edmonton open data browser)"

CLOSURE_COLOR = "#dc2626"     # red
PERMANENT_COLOR = "#7f1d1d"   # dark red
PARK_COLOR = "#6b7280"        # grey
SELECTED_COLOR = "#166534"    # dark green
USER_COLOR = "#2563eb"        # blue

# Corners at ±0.003° keep a lone marker at roughly street-block zoom.
MIN_BBOX_DEG = 0.003


def _new_map(width: int, height: int) -> CityTrailsStaticMap:
    return CityTrailsStaticMap(
        width,
        height,
        padding_x=12,
        padding_y=12,
        url_template="http://a.tile.openstreetmap.org/{z}/{x}/{y}.png",
        tile_request_timeout=10,
        headers={"User-Agent": USER_AGENT},
    )


def _add_min_bbox(m: StaticMap, center: Coordinates) -> None:
    """Invisible corner markers so a single point is not drawn at max zoom."""
    d = MIN_BBOX_DEG
    for lon_offset, lat_offset in [(-d, -d), (d, -d), (-d, d), (d, d)]:
        m.add_marker(
            CircleMarker((center.lon + lon_offset, center.lat + lat_offset), "#ffffff", 1)
        )


def _render(m: StaticMap) -> bytes:
    image = m.render()
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def generate_closure_preview(
    record: ClosureRecord,
    width: int = 320,
    height: int = 180,
) -> Optional[bytes]:
    """PNG preview for one closure card, or None.

    None means there is nothing to draw (no geometry, no usable
    coordinates) or rendering failed; the card shows a text placeholder.
    """
    paths = geometry_paths(record.geometry)
    center = record.coordinates
    if not paths and center is None:
        return None

    color = PERMANENT_COLOR if record.is_permanent else CLOSURE_COLOR
    try:
        m = _new_map(width, height)
        if paths:
            # staticmap fits the view to the drawn lines
            for path in paths:
                m.add_line(Line(path, color, 4))
        else:
            m.add_marker(CircleMarker((center.lon, center.lat), "white", 14))
            m.add_marker(CircleMarker((center.lon, center.lat), color, 10))
            _add_min_bbox(m, center)
        return _render(m)
    except Exception:
        logger.exception("Failed to generate closure preview map")
        return None


def generate_park_map(
    parks: Iterable[Park],
    selected: Optional[Park] = None,
    user: Optional[Coordinates] = None,
    width: int = 800,
    height: int = 600,
) -> Optional[bytes]:
    """PNG of park markers; the selected park and visitor drawn on top."""
    try:
        m = _new_map(width, height)
        drawn = 0
        for park in parks:
            coords = park.coordinates
            if coords is None or (selected is not None and park.id == selected.id):
                continue
            m.add_marker(CircleMarker((coords.lon, coords.lat), PARK_COLOR, 7))
            drawn += 1

        if selected is not None and selected.coordinates is not None:
            c = selected.coordinates
            m.add_marker(CircleMarker((c.lon, c.lat), "white", 18))
            m.add_marker(CircleMarker((c.lon, c.lat), SELECTED_COLOR, 14))
            drawn += 1

        if user is not None:
            m.add_marker(CircleMarker((user.lon, user.lat), "white", 14))
            m.add_marker(CircleMarker((user.lon, user.lat), USER_COLOR, 10))
            drawn += 1

        if drawn <= 1:
            center = (
                (selected.coordinates if selected is not None else None)
                or user
                or Coordinates(*CITY_CENTER)
            )
            _add_min_bbox(m, center)

        return _render(m)

    except Exception:
        logger.exception("Failed to generate park map")
        return None
