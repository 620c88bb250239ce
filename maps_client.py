"""
Google Maps Platform gateway: Places text search, Distance Matrix and
Directions.

Every transport failure, non-2xx response, or non-OK provider status is
raised as UpstreamServiceError carrying Google's own message.  Nothing here
retries.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests

from service_errors import InvalidRequest, UpstreamServiceError
from wa_trace import get_trace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    @classmethod
    def from_json(cls, value: Any, field_name: str = "coordinates") -> "Coordinates":
        """Build from ``{"latitude": .., "longitude": ..}`` request JSON."""
        if not isinstance(value, dict):
            raise InvalidRequest(f"{field_name} must be an object with latitude and longitude")
        try:
            lat = float(value["latitude"])
            lng = float(value["longitude"])
        except (KeyError, TypeError, ValueError):
            raise InvalidRequest(f"{field_name} must have numeric latitude and longitude")
        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise InvalidRequest(f"{field_name} must have finite latitude and longitude")
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
            raise InvalidRequest(f"{field_name} is out of range")
        return cls(lat, lng)

    @classmethod
    def from_place(cls, place: Dict[str, Any]) -> Optional["Coordinates"]:
        """Location of a Places API (New) place, or None if it has none."""
        location = place.get("location") if isinstance(place, dict) else None
        if not isinstance(location, dict):
            return None
        try:
            return cls(float(location["latitude"]), float(location["longitude"]))
        except (KeyError, TypeError, ValueError):
            return None

    def as_param(self) -> str:
        return f"{self.latitude},{self.longitude}"


def _error_message(response: requests.Response) -> str:
    """Best human-readable message from a failed Google response."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return err["message"]
        if isinstance(err, str):
            return err
        if data.get("error_message"):
            return data["error_message"]
        if data.get("status"):
            return data["status"]
    return f"HTTP {response.status_code}"


class GoogleMapsClient:
    """Client for Google Maps APIs"""

    # Per-call timeout in seconds.  Keeps any single request from hanging
    # the whole request; p99 for these APIs is well under 2 s.
    DEFAULT_TIMEOUT = 10

    PLACES_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"

    def __init__(self, api_key: str, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.base_url = "https://maps.googleapis.com/maps/api"
        if session is None:
            session = requests.Session()
            session.trust_env = False
        self.session = session

    def _record(self, endpoint_name: str, t0: float, status_code: int, provider_status: str = ""):
        trace = get_trace()
        if trace:
            trace.record_call(
                service="google_maps",
                endpoint=endpoint_name,
                elapsed_ms=int((time.time() - t0) * 1000),
                status_code=status_code,
                provider_status=provider_status,
            )

    def _send(self, service: str, endpoint_name: str, method: str, url: str, **kwargs) -> dict:
        """Issue one HTTP call with trace recording and error mapping."""
        t0 = time.time()
        try:
            response = self.session.request(method, url, timeout=self.DEFAULT_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            self._record(endpoint_name, t0, 0)
            logger.error("%s request failed: %s", endpoint_name, e)
            raise UpstreamServiceError(service, str(e)) from e

        if not response.ok:
            message = _error_message(response)
            self._record(endpoint_name, t0, response.status_code)
            logger.error(
                "%s returned HTTP %d: %s", endpoint_name, response.status_code, message
            )
            raise UpstreamServiceError(service, message, http_status=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            self._record(endpoint_name, t0, response.status_code)
            raise UpstreamServiceError(service, "Response was not valid JSON") from e

        provider_status = data.get("status", "") if isinstance(data, dict) else ""
        self._record(endpoint_name, t0, response.status_code, provider_status)
        if not isinstance(data, dict):
            raise UpstreamServiceError(service, "Response was not a JSON object")
        return data

    def search_text(
        self,
        query: str,
        origin: Coordinates,
        radius_meters: float = 10000.0,
        field_mask: str = "places.displayName,places.formattedAddress,places.location",
        rank_preference: str = "DISTANCE",
        language: str = "en",
    ) -> List[Dict]:
        """Search for places matching a text query, biased toward ``origin``."""
        body = {
            "textQuery": query,
            "locationBias": {
                "circle": {
                    "center": {
                        "latitude": origin.latitude,
                        "longitude": origin.longitude,
                    },
                    "radius": radius_meters,
                }
            },
            "rankPreference": rank_preference,
            "languageCode": language,
        }
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": field_mask,
        }
        data = self._send(
            "Search Places API", "search_text", "POST", self.PLACES_SEARCH_URL,
            json=body, headers=headers,
        )
        places = data.get("places") or []
        if not isinstance(places, list):
            raise UpstreamServiceError("Search Places API", "places is not a list")
        return places

    def distance_matrix(
        self,
        origin: Coordinates,
        destinations: Sequence[Coordinates],
        mode: str = "walking",
    ) -> List[Dict]:
        """
        One Distance Matrix call from ``origin`` to every destination.

        Returns the raw elements of the single result row, in destination
        order.  Callers own the positional merge.
        """
        params = {
            "origins": origin.as_param(),
            "destinations": "|".join(d.as_param() for d in destinations),
            "mode": mode,
            "key": self.api_key,
        }
        data = self._send(
            "Distance Matrix API", "distance_matrix", "GET",
            f"{self.base_url}/distancematrix/json", params=params,
        )
        if data.get("status") != "OK":
            raise UpstreamServiceError(
                "Distance Matrix API",
                data.get("error_message") or data.get("status") or "unknown status",
            )
        rows = data.get("rows") or []
        if not rows:
            return []
        return list(rows[0].get("elements") or [])

    def directions(
        self,
        origin: Coordinates,
        destination: Coordinates,
        mode: str = "walking",
        language: str = "en",
    ) -> Dict:
        """Directions API payload for origin -> destination, unchanged."""
        params = {
            "origin": origin.as_param(),
            "destination": destination.as_param(),
            "mode": mode,
            "language": language,
            "key": self.api_key,
        }
        data = self._send(
            "Directions API", "directions", "GET",
            f"{self.base_url}/directions/json", params=params,
        )
        if data.get("status") not in ("OK", "ZERO_RESULTS"):
            raise UpstreamServiceError(
                "Directions API",
                data.get("error_message") or data.get("status") or "unknown status",
            )
        return data
