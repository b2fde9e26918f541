"""
HTTP layer for the City of Edmonton open data portal (Socrata).

All portal requests in the application go through OpenDataClient:
- one fresh requests call per request (thread-safe, no shared Session)
- optional Socrata app token sent as X-App-Token
- a per-call timeout from PortalConfig
- every failure surfaces as OpenDataError so callers handle one type

There are no retries and no caching at this layer. Callers decide what
a failure means for the page (usually: render an empty list).
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from portal_config import PortalConfig

logger = logging.getLogger(__name__)

USER_AGENT = "CityTrails/1.0 (Edmonton open data browser)"


class OpenDataError(Exception):
    """Raised when a portal request fails or returns an unusable body."""

    pass


class OpenDataHTTPError(OpenDataError):
    """Raised when the portal answers with a non-2xx status."""

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} from {url}")
        self.status_code = status_code
        self.url = url


class OpenDataClient:
    def __init__(self, config: Optional[PortalConfig] = None):
        self.config = config or PortalConfig()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if self.config.app_token:
            headers["X-App-Token"] = self.config.app_token
        return headers

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        caller: str = "unknown",
    ) -> Any:
        """GET a portal resource and return the decoded JSON body.

        Raises:
            OpenDataHTTPError: non-2xx response.
            OpenDataError: network failure or a body that is not JSON.
        """
        t0 = time.time()
        try:
            resp = requests.get(
                url,
                params=params,
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            logger.warning(
                "Open data request failed [caller=%s url=%s]: %s", caller, url, e
            )
            raise OpenDataError(f"Request to {url} failed: {e}") from e

        elapsed_ms = (time.time() - t0) * 1000
        logger.debug(
            "Open data %s -> %d in %.0fms [caller=%s]",
            url, resp.status_code, elapsed_ms, caller,
        )

        if not resp.ok:
            logger.warning(
                "Open data returned %d [caller=%s url=%s]",
                resp.status_code, caller, url,
            )
            raise OpenDataHTTPError(resp.status_code, url)

        try:
            return resp.json()
        except ValueError as e:
            raise OpenDataError(f"Non-JSON response from {url}") from e

    def _rows(self, url: str, params: Dict[str, Any], caller: str) -> List[dict]:
        data = self.get_json(url, params=params, caller=caller)
        if not isinstance(data, list):
            raise OpenDataError(f"Expected a JSON array from {url}")
        return [row for row in data if isinstance(row, dict)]

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------

    def fetch_parks(self) -> Any:
        """Raw parks payload, returned verbatim for the proxy endpoint."""
        return self.get_json(
            self.config.parks_url,
            params={"$limit": self.config.parks_limit},
            caller="parks",
        )

    def fetch_trail_closures(self) -> List[dict]:
        return self._rows(
            self.config.trail_closures_url,
            {"$limit": self.config.trail_closures_limit},
            caller="trail_closures",
        )

    def fetch_traffic_disruptions(self) -> List[dict]:
        return self._rows(
            self.config.traffic_disruptions_url,
            {"$where": self.config.traffic_status_filter()},
            caller="traffic_disruptions",
        )

    def find_neighbourhood(self, lat: str, lon: str, column: str) -> Optional[str]:
        """Name of the neighbourhood whose boundary lies within the search
        radius of (lat, lon), queried against one geometry column."""
        params = {
            "$where": (
                f"within_circle({column}, {lat}, {lon}, "
                f"{self.config.neighbourhood_radius_m})"
            ),
            "$limit": 1,
        }
        rows = self._rows(
            self.config.neighbourhoods_url, params, caller="neighbourhoods"
        )
        for row in rows:
            for key in ("name", "neighbourhood_name", "descriptive_name"):
                name = str(row.get(key) or "").strip()
                if name:
                    return name
        return None
