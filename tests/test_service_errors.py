"""Tests for the error taxonomy's status codes and JSON bodies."""

import pytest

from service_errors import (
    DistanceResultMismatch,
    EmptyImage,
    ImageTooLarge,
    InvalidImageEncoding,
    InvalidImageFormat,
    InvalidRequest,
    MalformedModelOutput,
    ServiceNotConfigured,
    UpstreamServiceError,
    WalkAidError,
)


@pytest.mark.parametrize("cls,status", [
    (InvalidRequest, 400),
    (EmptyImage, 400),
    (InvalidImageFormat, 400),
    (InvalidImageEncoding, 400),
    (ImageTooLarge, 413),
    (MalformedModelOutput, 502),
])
def test_status_codes(cls, status):
    err = cls("boom")
    assert err.status_code == status
    assert err.is_client_error == (status < 500)
    assert err.to_dict() == {"error": "boom"}


def test_base_default_and_override():
    assert WalkAidError("x").status_code == 500
    assert WalkAidError("x", status_code=418).status_code == 418


def test_upstream_error_details():
    err = UpstreamServiceError("Directions API", "OVER_QUERY_LIMIT", http_status=200)
    assert err.message == "Directions API error: OVER_QUERY_LIMIT"
    assert err.to_dict() == {
        "error": "Directions API error: OVER_QUERY_LIMIT",
        "details": "OVER_QUERY_LIMIT",
    }
    assert not err.is_client_error


def test_distance_mismatch_message():
    err = DistanceResultMismatch(requested=4, returned=3)
    assert "3 elements for 4 destinations" in err.message
    assert err.status_code == 502


def test_service_not_configured():
    err = ServiceNotConfigured(["GEMINI_API_KEY"])
    assert err.status_code == 503
    assert err.to_dict()["missing_keys"] == ["GEMINI_API_KEY"]
    assert "GEMINI_API_KEY" in err.message


def test_malformed_output_keeps_payload():
    err = MalformedModelOutput("bad", payload="not json")
    assert err.payload == "not json"
