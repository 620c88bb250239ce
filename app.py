import logging
import os
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
import sentry_sdk
from flask import Flask, request, jsonify, g
from flask_cors import CORS

from hazard_analysis import FALLBACK_SPEECH_TEXT, STRUCTURED, normalize_hazard_output
from image_payload import decode_image_payload
from maps_client import Coordinates, GoogleMapsClient
from place_search import (
    DEFAULT_FIELD_MASK,
    DEFAULT_RADIUS_METERS,
    DEFAULT_RANK_PREFERENCE,
    search_places,
)
from service_errors import (
    InvalidRequest,
    ServiceNotConfigured,
    UpstreamServiceError,
    WalkAidError,
)
from settings import Settings, load_settings, missing_service_keys
from vision_client import VisionModelClient
from wa_trace import RequestTrace, clear_trace, get_trace, set_trace, timed_stage

settings = load_settings()

# ---------------------------------------------------------------------------
# Sentry error tracking, gated on SENTRY_DSN and silent when unset (local dev)
# ---------------------------------------------------------------------------
SENTRY_ENABLED = bool(settings.sentry_dsn)


def _sentry_before_send(event, hint):
    """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
    exc_info = hint.get("exc_info")
    if exc_info:
        exc_type, exc_value, _ = exc_info
        msg = str(exc_value) if exc_value else ""
        # Bad client input (missing fields, oversized images, ...)
        if isinstance(exc_value, WalkAidError) and exc_value.is_client_error:
            sentry_sdk.add_breadcrumb(category="client_input", message=msg, level="warning")
            return None
        # Maps timeouts / connection failures
        if exc_type is not None and issubclass(exc_type, requests.exceptions.RequestException):
            sentry_sdk.add_breadcrumb(category="google_maps", message=msg, level="warning")
            return None
        # Quota exhaustion at Google or Gemini
        if isinstance(exc_value, UpstreamServiceError) and exc_value.http_status == 429:
            sentry_sdk.add_breadcrumb(category="rate_limit", message=msg or "HTTP 429", level="warning")
            return None
    return event


if SENTRY_ENABLED:
    from sentry_sdk.integrations.flask import FlaskIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        environment=os.environ.get("DEPLOY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.config["WALKAID_SETTINGS"] = settings

# Mobile clients call from arbitrary origins; preflight is answered for
# POST with the API key header allowed.  With no origin list the header is
# the literal "*", never the reflected Origin.
CORS_WILDCARD = settings.cors_origins == ("*",)
CORS(
    app,
    origins="*" if CORS_WILDCARD else list(settings.cors_origins),
    send_wildcard=CORS_WILDCARD,
    methods=["POST"],
    allow_headers=["Content-Type", "X-API-Key"],
    max_age=3600,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

if missing_service_keys(settings):
    logger.warning(
        "Missing upstream configuration: %s. "
        "Affected endpoints will answer 503 until it is set. "
        "For local development, copy .env.example to .env and add your keys.",
        ", ".join(missing_service_keys(settings)),
    )

# Path -> endpoint name used for client API keys and upstream requirements.
ENDPOINT_BY_PATH = {
    "/search-places": "search_places",
    "/get-direction": "get_direction",
    "/detect-hazards": "detect_hazards",
    "/object-reader": "object_reader",
}

TRAVEL_MODES = ("walking", "driving", "bicycling", "transit")


def _settings() -> Settings:
    return app.config["WALKAID_SETTINGS"]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _error_response(status_code: int, body: Dict[str, Any]):
    payload = dict(body)
    payload["timestamp"] = _timestamp()
    payload["request_id"] = getattr(g, "request_id", "unknown")
    return jsonify(payload), status_code


# ---------------------------------------------------------------------------
# Request context: request ID, trace, client API key
# ---------------------------------------------------------------------------
def _generate_request_id():
    return uuid.uuid4().hex[:10]


def _check_api_key(endpoint: str):
    """Return an error response if the caller's X-API-Key is missing or wrong."""
    provided = request.headers.get("X-API-Key", "")
    if not provided:
        logger.warning("[%s] Rejected %s: missing API key", g.request_id, endpoint)
        return _error_response(401, {"error": "Invalid API key"})

    expected = _settings().endpoint_api_key(endpoint)
    if not expected:
        logger.warning(
            "[%s] No client API key configured for %s, allowing request",
            g.request_id, endpoint,
        )
        return None

    if not secrets.compare_digest(provided.encode(), expected.encode()):
        logger.warning("[%s] Rejected %s: invalid API key", g.request_id, endpoint)
        return _error_response(401, {"error": "Invalid API key"})
    return None


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()
    g.endpoint = ENDPOINT_BY_PATH.get(request.path.rstrip("/") or "/")
    if g.endpoint is None or request.method == "OPTIONS":
        return None

    set_trace(RequestTrace(trace_id=g.request_id, endpoint=g.endpoint))
    return _check_api_key(g.endpoint)


@app.after_request
def _after_request(response):
    trace = get_trace()
    if trace:
        trace.log_summary()
    return response


@app.teardown_request
def _clear_request_trace(exc):
    clear_trace()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        raise InvalidRequest("Missing request body")
    return data


def _optional_number(body: Dict[str, Any], key: str, default: float) -> float:
    value = body.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise InvalidRequest(f"{key} must be a positive number")
    return float(value)


def _optional_string(body: Dict[str, Any], key: str, default: str) -> str:
    value = body.get(key)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise InvalidRequest(f"{key} must be a string")
    return value


def _require_configured(endpoint: str):
    missing = missing_service_keys(_settings(), endpoint)
    if missing:
        raise ServiceNotConfigured(missing)


def _maps_client(endpoint: str) -> GoogleMapsClient:
    _require_configured(endpoint)
    return GoogleMapsClient(_settings().maps_api_key)


def _vision_client(endpoint: str) -> VisionModelClient:
    _require_configured(endpoint)
    return VisionModelClient(_settings().vision)


def _decode_request_image(body: Dict[str, Any]):
    image = body.get("image")
    if not image:
        raise InvalidRequest("Missing image data in request body")
    if not isinstance(image, str):
        raise InvalidRequest("image must be a base64 string")
    return timed_stage("validate", decode_image_payload, image, _settings().max_image_bytes)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.route("/search-places", methods=["POST"])
def search_places_endpoint():
    """Search nearby places and attach walking distance to each.

    Body: {"textQuery", "currentCoordinates", "radius"?, "fields"?, "rankPreference"?}
    Returns: {"places": [...]}
    """
    body = _json_body()
    text_query = body.get("textQuery")
    coordinates = body.get("currentCoordinates")
    if not text_query or not coordinates:
        raise InvalidRequest("Missing textQuery or currentCoordinates in request body")
    if not isinstance(text_query, str):
        raise InvalidRequest("textQuery must be a string")

    origin = Coordinates.from_json(coordinates, "currentCoordinates")
    radius = _optional_number(body, "radius", DEFAULT_RADIUS_METERS)
    fields = _optional_string(body, "fields", DEFAULT_FIELD_MASK)
    rank_preference = _optional_string(body, "rankPreference", DEFAULT_RANK_PREFERENCE)

    maps = _maps_client("search_places")
    logger.info("[%s] Searching places query=%r", g.request_id, text_query)
    places = search_places(
        maps, text_query, origin,
        radius=radius,
        field_mask=fields,
        rank_preference=rank_preference,
    )
    logger.info("[%s] Search returned %d places", g.request_id, len(places))
    return jsonify({"places": places})


@app.route("/get-direction", methods=["POST"])
def get_direction_endpoint():
    """Turn-by-turn directions.  Body: {"origin", "destination", "mode"?}"""
    body = _json_body()
    if not body.get("origin") or not body.get("destination"):
        raise InvalidRequest("Missing destination or origin in request body")

    origin = Coordinates.from_json(body["origin"], "origin")
    destination = Coordinates.from_json(body["destination"], "destination")
    mode = _optional_string(body, "mode", "walking").lower()
    if mode not in TRAVEL_MODES:
        raise InvalidRequest("mode must be one of: " + ", ".join(TRAVEL_MODES))

    maps = _maps_client("get_direction")
    logger.info("[%s] Getting %s directions", g.request_id, mode)
    directions = timed_stage("directions", maps.directions, origin, destination, mode=mode)
    return jsonify(directions)


@app.route("/detect-hazards", methods=["POST"])
def detect_hazards_endpoint():
    """Hazard analysis of one camera frame.  Body: {"image"}

    Returns: {"speechText", "severity"}
    """
    body = _json_body()
    image, image_format = _decode_request_image(body)

    vision = _vision_client("detect_hazards")
    variant = _settings().hazard_prompt_variant
    raw = timed_stage("model", vision.analyze_hazards, image, image_format, variant=variant)

    expect = STRUCTURED if variant == "structured" else None
    result = timed_stage("parse", normalize_hazard_output, raw, expect=expect)
    logger.info(
        "[%s] Hazard detection severity=%s", g.request_id, result.severity_label
    )
    return jsonify(result.to_dict())


@app.route("/object-reader", methods=["POST"])
def object_reader_endpoint():
    """Answer a spoken command about the camera frame.  Body: {"image", "text"?}"""
    body = _json_body()
    image, image_format = _decode_request_image(body)
    command = _optional_string(body, "text", "")

    vision = _vision_client("object_reader")
    speech = timed_stage("model", vision.read_objects, image, image_format, command)
    return jsonify({"speechText": speech or FALLBACK_SPEECH_TEXT})


@app.route("/healthz")
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    missing = missing_service_keys(_settings())
    return jsonify({
        "status": "ok" if not missing else "degraded",
        "missing_keys": missing,
    }), 200 if not missing else 503


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(WalkAidError)
def handle_walkaid_error(e: WalkAidError):
    request_id = getattr(g, "request_id", "unknown")
    if e.is_client_error:
        logger.warning("[%s] %s: %s", request_id, type(e).__name__, e.message)
        if SENTRY_ENABLED:
            sentry_sdk.add_breadcrumb(category="client_input", message=e.message, level="warning")
    else:
        payload: Optional[str] = getattr(e, "payload", None)
        logger.error(
            "[%s] %s: %s%s",
            request_id, type(e).__name__, e.message,
            f" payload={payload[:2000]!r}" if payload else "",
        )
        if SENTRY_ENABLED:
            sentry_sdk.capture_exception(e)
    return _error_response(e.status_code, e.to_dict())


@app.errorhandler(405)
def method_not_allowed(e):
    allowed = sorted(m for m in (e.valid_methods or []) if m not in ("HEAD", "OPTIONS"))
    return _error_response(405, {
        "error": "Method not allowed",
        "allowedMethods": allowed or ["POST"],
    })


@app.errorhandler(404)
def not_found(e):
    return _error_response(404, {"error": "Not found"})


@app.errorhandler(500)
def internal_error(e):
    original = getattr(e, "original_exception", None)
    if original is not None:
        logger.error(
            "[%s] Unhandled error: %s",
            getattr(g, "request_id", "unknown"), original,
            exc_info=(type(original), original, original.__traceback__),
        )
    return _error_response(500, {"error": "Internal server error"})


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
