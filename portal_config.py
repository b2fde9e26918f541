"""
Open data portal configuration for CityTrails.

Owns every URL, limit and lookup constant used to talk to the City of
Edmonton Socrata portal. Values can be overridden through environment
variables (loaded from .env by app.py) and are read once into a frozen
dataclass so callers get type checking and a single place to look.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


DEFAULT_BASE_URL = "https://data.edmonton.ca/resource"

# Socrata dataset identifiers
PARKS_DATASET = "gdd9-eqv9"
TRAIL_CLOSURES_DATASET = "k4mi-dkvi"
TRAFFIC_DISRUPTIONS_DATASET = "k4tx-5k8p"
NEIGHBOURHOODS_DATASET = "65fr-66s6"

# Embedded third-party map widgets used by the closures "map" view.
TRAIL_CLOSURES_WIDGET_URL = (
    "https://data.edmonton.ca/w/k4mi-dkvi/embed?cur=trail-closures"
)
TRAFFIC_DISRUPTIONS_WIDGET_URL = (
    "https://data.edmonton.ca/w/k4tx-5k8p/embed?cur=traffic-disruptions"
)

# Downtown Edmonton, used when a map has nothing to center on.
CITY_CENTER = (53.5461, -113.4938)


@dataclass(frozen=True)
class PortalConfig:
    """Endpoints and limits for one deployment of the portal client."""
    base_url: str = DEFAULT_BASE_URL
    app_token: Optional[str] = None
    # Per-call deadline in seconds (OPENDATA_TIMEOUT). Portal requests have
    # no retries, so a call that hits it fails the whole fetch.
    timeout: float = 20.0

    parks_limit: int = 1000
    trail_closures_limit: int = 500
    traffic_statuses: Tuple[str, ...] = ("Current", "REVISED")

    # Reverse geocoding
    neighbourhood_columns: Tuple[str, ...] = ("the_geom", "geometry_multipolygon")
    neighbourhood_radius_m: int = 50
    geocode_lookups_per_cycle: int = 40

    widget_urls: Dict[str, str] = field(default_factory=lambda: {
        "trail": TRAIL_CLOSURES_WIDGET_URL,
        "traffic": TRAFFIC_DISRUPTIONS_WIDGET_URL,
    })

    def dataset_url(self, dataset_id: str) -> str:
        return f"{self.base_url.rstrip('/')}/{dataset_id}.json"

    @property
    def parks_url(self) -> str:
        return self.dataset_url(PARKS_DATASET)

    @property
    def trail_closures_url(self) -> str:
        return self.dataset_url(TRAIL_CLOSURES_DATASET)

    @property
    def traffic_disruptions_url(self) -> str:
        return self.dataset_url(TRAFFIC_DISRUPTIONS_DATASET)

    @property
    def neighbourhoods_url(self) -> str:
        return self.dataset_url(NEIGHBOURHOODS_DATASET)

    def traffic_status_filter(self) -> str:
        """SoQL $where clause restricting traffic rows to live statuses."""
        quoted = ", ".join(f"'{s}'" for s in self.traffic_statuses)
        return f"status in ({quoted})"

    @classmethod
    def from_env(cls) -> "PortalConfig":
        defaults = cls()
        return cls(
            base_url=os.environ.get("OPENDATA_BASE_URL") or defaults.base_url,
            app_token=os.environ.get("OPENDATA_APP_TOKEN") or None,
            timeout=float(os.environ.get("OPENDATA_TIMEOUT") or defaults.timeout),
            geocode_lookups_per_cycle=int(
                os.environ.get("GEOCODE_LOOKUPS_PER_CYCLE")
                or defaults.geocode_lookups_per_cycle
            ),
            neighbourhood_radius_m=int(
                os.environ.get("NEIGHBOURHOOD_SEARCH_RADIUS_M")
                or defaults.neighbourhood_radius_m
            ),
            widget_urls={
                "trail": (
                    os.environ.get("TRAIL_CLOSURES_WIDGET_URL")
                    or TRAIL_CLOSURES_WIDGET_URL
                ),
                "traffic": (
                    os.environ.get("TRAFFIC_DISRUPTIONS_WIDGET_URL")
                    or TRAFFIC_DISRUPTIONS_WIDGET_URL
                ),
            },
        )
