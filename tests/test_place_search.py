"""Tests for place_search.py: truncation and positional distance merge.

A misaligned merge would read one place's walking time out for another,
so the index correspondence is checked with duplicate coordinates too.
"""

from unittest.mock import MagicMock

import pytest

from maps_client import Coordinates
from place_search import (
    DEFAULT_FIELD_MASK,
    MAX_ENRICHED_PLACES,
    enrich_with_distances,
    search_places,
)
from service_errors import DistanceResultMismatch, UpstreamServiceError

ORIGIN = Coordinates(13.7563, 100.5018)


def _place(i, lat=None, lng=None):
    return {
        "displayName": {"text": f"Place {i}"},
        "formattedAddress": f"{i} Test Rd",
        "location": {
            "latitude": 13.0 + i * 0.01 if lat is None else lat,
            "longitude": 100.0 if lng is None else lng,
        },
    }


def _element(i):
    return {
        "status": "OK",
        "distance": {"text": f"{i * 100} m", "value": i * 100},
        "duration": {"text": f"{i} mins", "value": i * 60},
    }


def _maps(elements=None, places=None):
    maps = MagicMock()
    maps.search_text.return_value = places or []
    if elements is not None:
        maps.distance_matrix.side_effect = lambda origin, dests, mode="walking": elements(dests)
    return maps


class TestEnrichment:
    def test_zero_places_skips_distance_call(self):
        maps = _maps()
        assert enrich_with_distances(maps, [], ORIGIN) == []
        maps.distance_matrix.assert_not_called()

    def test_six_places_truncated_to_four(self):
        places = [_place(i) for i in range(6)]
        maps = _maps(lambda dests: [_element(i) for i in range(len(dests))])

        result = enrich_with_distances(maps, places, ORIGIN)

        assert len(result) == MAX_ENRICHED_PLACES == 4
        maps.distance_matrix.assert_called_once()
        origin, dests = maps.distance_matrix.call_args.args
        assert origin == ORIGIN
        assert dests == [Coordinates.from_place(p) for p in places[:4]]
        assert [r["displayName"]["text"] for r in result] == [f"Place {i}" for i in range(4)]

    def test_merge_by_index_with_duplicate_coordinates(self):
        places = [_place(i, lat=13.5, lng=100.5) for i in range(3)]
        maps = _maps(lambda dests: [_element(i + 1) for i in range(len(dests))])

        result = enrich_with_distances(maps, places, ORIGIN)

        for i, place in enumerate(result):
            assert place["displayName"]["text"] == f"Place {i}"
            assert place["distance"]["value"] == (i + 1) * 100
            assert place["duration"]["value"] == (i + 1) * 60

    def test_original_places_not_mutated(self):
        places = [_place(0)]
        maps = _maps(lambda dests: [_element(1)])
        enrich_with_distances(maps, places, ORIGIN)
        assert "distance" not in places[0]

    def test_unroutable_element_gets_none(self):
        places = [_place(0), _place(1)]
        maps = _maps(lambda dests: [_element(1), {"status": "ZERO_RESULTS"}])
        result = enrich_with_distances(maps, places, ORIGIN)
        assert result[0]["distance"]["value"] == 100
        assert result[1]["distance"] is None
        assert result[1]["duration"] is None

    @pytest.mark.parametrize("returned", [0, 1, 3])
    def test_cardinality_mismatch_is_fatal(self, returned):
        places = [_place(i) for i in range(2)]
        maps = _maps(lambda dests: [_element(i) for i in range(returned)])
        with pytest.raises(DistanceResultMismatch) as exc:
            enrich_with_distances(maps, places, ORIGIN)
        assert exc.value.requested == 2
        assert exc.value.returned == returned

    def test_missing_location_skips_enrichment(self):
        places = [_place(0), {"displayName": {"text": "No location"}}]
        maps = _maps(lambda dests: [])
        result = enrich_with_distances(maps, places, ORIGIN)
        assert result == places
        maps.distance_matrix.assert_not_called()

    def test_mode_forwarded(self):
        maps = _maps(lambda dests: [_element(1)])
        enrich_with_distances(maps, [_place(0)], ORIGIN, mode="driving")
        assert maps.distance_matrix.call_args.kwargs["mode"] == "driving"

    def test_upstream_error_propagates(self):
        maps = MagicMock()
        maps.distance_matrix.side_effect = UpstreamServiceError("Distance Matrix API", "denied")
        with pytest.raises(UpstreamServiceError):
            enrich_with_distances(maps, [_place(0)], ORIGIN)


class TestSearchPlaces:
    def test_search_then_enrich(self):
        places = [_place(i) for i in range(5)]
        maps = _maps(lambda dests: [_element(i) for i in range(len(dests))], places=places)

        result = search_places(maps, "pharmacy", ORIGIN)

        maps.search_text.assert_called_once_with(
            "pharmacy", ORIGIN,
            radius_meters=10000.0,
            field_mask=DEFAULT_FIELD_MASK,
            rank_preference="DISTANCE",
        )
        assert len(result) == 4
        assert all("distance" in p for p in result)

    def test_no_results(self):
        maps = _maps(places=[])
        assert search_places(maps, "unicorn shop", ORIGIN) == []
        maps.distance_matrix.assert_not_called()

    def test_search_failure_stops_before_enrichment(self):
        maps = MagicMock()
        maps.search_text.side_effect = UpstreamServiceError("Search Places API", "quota")
        with pytest.raises(UpstreamServiceError):
            search_places(maps, "coffee", ORIGIN)
        maps.distance_matrix.assert_not_called()
