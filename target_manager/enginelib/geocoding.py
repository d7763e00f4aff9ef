"""Region lookup and place search against a Nominatim endpoint."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .errors import RegionResolutionError
from .marker_record import UNKNOWN_REGION

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchHit:
    lat: float
    lng: float
    name: str
    region: Optional[str] = None


class NominatimGeocoder:
    """
    Reverse geocoding to a coarse region label, plus forward search.

    ``resolve_region`` never raises: any failure becomes ``"Unknown"``.
    """

    DEFAULT_URL = "https://nominatim.openstreetmap.org"
    DEFAULT_TIMEOUT = 5.0
    DEFAULT_USER_AGENT = "target-manager/0.1"

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        enabled: bool = True,
    ):
        self._url = base_url.rstrip("/")
        self._timeout = timeout
        self._user_agent = user_agent
        self._enabled = enabled

        # Stats
        self._requests = 0
        self._errors = 0
        self._last_request_time: Optional[float] = None

    def resolve_region(self, lat: float, lng: float) -> str:
        if not self._enabled:
            return UNKNOWN_REGION
        try:
            data = self._get("reverse", {"format": "json", "lat": lat, "lon": lng, "zoom": 10})
            if not isinstance(data, dict):
                raise RegionResolutionError("Unexpected reverse geocoding payload")
            return _region_from_address(data.get("address")) or UNKNOWN_REGION
        except RegionResolutionError as exc:
            log.warning("Region lookup failed for (%s, %s): %s", lat, lng, exc)
            return UNKNOWN_REGION

    def search(self, query: str) -> Optional[SearchHit]:
        """Return the first match for ``query`` or None."""
        query = (query or "").strip()
        if not query or not self._enabled:
            return None
        try:
            data = self._get("search", {"format": "json", "addressdetails": 1, "q": query})
        except RegionResolutionError as exc:
            log.warning("Search failed for %r: %s", query, exc)
            return None
        if not isinstance(data, list) or not data:
            return None
        first = data[0]
        try:
            lat = float(first["lat"])
            lng = float(first["lon"])
        except (KeyError, TypeError, ValueError):
            log.warning("Search result without coordinates for %r", query)
            return None
        display_name = str(first.get("display_name") or query)
        return SearchHit(
            lat=lat,
            lng=lng,
            name=display_name.split(",")[0].strip(),
            region=_region_from_address(first.get("address")),
        )

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Any:
        self._requests += 1
        self._last_request_time = time.time()
        try:
            response = requests.get(
                f"{self._url}/{endpoint}",
                params=params,
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent},
            )
            if not response.ok:
                raise RegionResolutionError(f"HTTP {response.status_code}")
            return response.json()
        except requests.RequestException as exc:
            self._errors += 1
            raise RegionResolutionError(str(exc)) from exc
        except ValueError as exc:
            self._errors += 1
            raise RegionResolutionError(f"Invalid JSON: {exc}") from exc
        except RegionResolutionError:
            self._errors += 1
            raise

    def stats(self) -> dict:
        return {
            "enabled": self._enabled,
            "requests": self._requests,
            "errors": self._errors,
            "last_request": self._last_request_time,
        }


def _region_from_address(address: Any) -> Optional[str]:
    if not isinstance(address, dict):
        return None
    return address.get("province") or address.get("state")
