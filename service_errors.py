"""
Error taxonomy for the WalkAid endpoints.

Every failure the request pipelines can raise is a WalkAidError subclass
carrying the HTTP status it maps to.  app.py turns these into JSON error
bodies; nothing in the pipelines retries.

    client input      -> 4xx  (InvalidRequest, EmptyImage, InvalidImageFormat,
                               InvalidImageEncoding, ImageTooLarge)
    upstream contract -> 502  (MalformedModelOutput, DistanceResultMismatch)
    upstream transport-> 502  (UpstreamServiceError)
    deployment config -> 503  (ServiceNotConfigured)
"""

from typing import Any, Dict, Optional


class WalkAidError(Exception):
    """Base class for errors that become a structured JSON response."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


# =============================================================================
# Client input errors
# =============================================================================

class InvalidRequest(WalkAidError):
    """Request body is missing, not JSON, or lacks a required field."""

    status_code = 400


class EmptyImage(WalkAidError):
    status_code = 400


class InvalidImageFormat(WalkAidError):
    """A data-URI prefix is present but malformed."""

    status_code = 400


class InvalidImageEncoding(WalkAidError):
    status_code = 400


class ImageTooLarge(WalkAidError):
    status_code = 413


# =============================================================================
# Upstream errors
# =============================================================================

class MalformedModelOutput(WalkAidError):
    """The vision model answered, but not in the shape it was asked for."""

    status_code = 502

    def __init__(self, message: str, payload: Optional[str] = None):
        super().__init__(message)
        self.payload = payload


class DistanceResultMismatch(WalkAidError):
    """Distance Matrix returned a different number of elements than requested."""

    status_code = 502

    def __init__(self, requested: int, returned: int):
        super().__init__(
            f"Distance Matrix returned {returned} elements for {requested} destinations"
        )
        self.requested = requested
        self.returned = returned


class UpstreamServiceError(WalkAidError):
    """Transport-level or provider-status failure from an external gateway.

    ``upstream_message`` is the provider's own message, kept verbatim so it
    can be surfaced in the response ``details`` field.
    """

    status_code = 502

    def __init__(self, service: str, upstream_message: str, http_status: Optional[int] = None):
        super().__init__(f"{service} error: {upstream_message}")
        self.service = service
        self.upstream_message = upstream_message
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "details": self.upstream_message}


class ServiceNotConfigured(WalkAidError):
    """A required upstream API key is missing from the deployment."""

    status_code = 503

    def __init__(self, missing_keys):
        super().__init__(
            "Service is not configured. Missing: " + ", ".join(missing_keys)
        )
        self.missing_keys = list(missing_keys)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "missing_keys": self.missing_keys}
