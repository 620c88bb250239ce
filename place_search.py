"""
Place search with walking distance enrichment.

search_places() asks the Places API for candidates near the caller, keeps
the first MAX_ENRICHED_PLACES, and annotates each with the distance and
duration from one batched Distance Matrix call.  The matrix row is merged
back strictly by index: the Nth place receives the Nth element.
"""

import json
import logging
from typing import Any, Dict, List

from maps_client import Coordinates, GoogleMapsClient
from service_errors import DistanceResultMismatch
from wa_trace import timed_stage

logger = logging.getLogger(__name__)

# Bounds the batched matrix call and keeps the spoken result list short.
MAX_ENRICHED_PLACES = 4

DEFAULT_RADIUS_METERS = 10000.0
DEFAULT_FIELD_MASK = "places.displayName,places.formattedAddress,places.location"
DEFAULT_RANK_PREFERENCE = "DISTANCE"
DEFAULT_TRAVEL_MODE = "walking"


def enrich_with_distances(
    maps: GoogleMapsClient,
    places: List[Dict[str, Any]],
    origin: Coordinates,
    mode: str = DEFAULT_TRAVEL_MODE,
) -> List[Dict[str, Any]]:
    """Annotate up to MAX_ENRICHED_PLACES places with distance/duration.

    Returns new dicts in the original order.  Elements the matrix could not
    route (status other than OK) leave ``distance``/``duration`` as None.
    """
    if not places:
        return []

    candidates = places[:MAX_ENRICHED_PLACES]
    destinations = [Coordinates.from_place(p) for p in candidates]
    if any(d is None for d in destinations):
        logger.warning(
            "Skipping distance enrichment: %d of %d places have no location",
            sum(1 for d in destinations if d is None), len(candidates),
        )
        return list(candidates)

    elements = maps.distance_matrix(origin, destinations, mode=mode)
    if len(elements) != len(candidates):
        logger.error(
            "Distance Matrix cardinality mismatch: requested=%d returned=%d payload=%s",
            len(candidates), len(elements), json.dumps(elements)[:2000],
        )
        raise DistanceResultMismatch(len(candidates), len(elements))

    enriched = []
    for place, element in zip(candidates, elements):
        ok = isinstance(element, dict) and element.get("status", "OK") == "OK"
        enriched.append({
            **place,
            "distance": element.get("distance") if ok else None,
            "duration": element.get("duration") if ok else None,
        })
    return enriched


def search_places(
    maps: GoogleMapsClient,
    text_query: str,
    origin: Coordinates,
    radius: float = DEFAULT_RADIUS_METERS,
    field_mask: str = DEFAULT_FIELD_MASK,
    rank_preference: str = DEFAULT_RANK_PREFERENCE,
    mode: str = DEFAULT_TRAVEL_MODE,
) -> List[Dict[str, Any]]:
    """Search for places near ``origin`` and enrich them with travel distance."""
    places = timed_stage(
        "search", maps.search_text,
        text_query, origin,
        radius_meters=radius,
        field_mask=field_mask,
        rank_preference=rank_preference,
    )
    logger.info("Places search for %r returned %d candidates", text_query, len(places))
    return timed_stage("enrich", enrich_with_distances, maps, places, origin, mode=mode)
