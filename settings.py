"""
Runtime configuration for the WalkAid backend.

All environment lookups happen once, in load_settings().  The resulting
frozen Settings object is handed to each gateway client's constructor, so
request handling never reads os.environ directly.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Inbound images are rejected above this size before any model call.
# MAX_IMAGE_BYTES may lower it but never raise it.
DEFAULT_MAX_IMAGE_BYTES = 4 * 1024 * 1024

DEFAULT_MODEL_NAME = "gemini-2.0-flash"
DEFAULT_LOCATION = "asia-southeast1"

HAZARD_PROMPT_VARIANTS = ("structured", "brief")

# Endpoint name -> env var holding the client key callers must present
# in X-API-Key.
ENDPOINT_KEY_VARS = {
    "search_places": "SEARCH_PLACES_FUNCTION_API_KEY",
    "get_direction": "GET_DIRECTION_FUNCTION_API_KEY",
    "detect_hazards": "DETECT_HAZARDS_FUNCTION_API_KEY",
    "object_reader": "OBJECT_READER_FUNCTION_API_KEY",
}

# Upstream credentials each endpoint cannot work without.
_ENDPOINT_REQUIREMENTS = {
    "search_places": ("maps",),
    "get_direction": ("maps",),
    "detect_hazards": ("vision",),
    "object_reader": ("vision",),
}


@dataclass(frozen=True)
class VisionSettings:
    """Gemini access.  An API key wins; otherwise Vertex AI project/location."""
    api_key: Optional[str] = None
    project_id: Optional[str] = None
    location: str = DEFAULT_LOCATION
    model_name: str = DEFAULT_MODEL_NAME
    temperature: float = 0.45
    max_output_tokens: int = 1024

    @property
    def use_vertex(self) -> bool:
        return not self.api_key and bool(self.project_id)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) or bool(self.project_id)


@dataclass(frozen=True)
class Settings:
    maps_api_key: Optional[str] = None
    vision: VisionSettings = field(default_factory=VisionSettings)
    hazard_prompt_variant: str = "structured"
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    # Tuple of (endpoint, key) pairs so the dataclass stays hashable.
    endpoint_api_keys: Tuple[Tuple[str, str], ...] = ()
    cors_origins: Tuple[str, ...] = ("*",)
    sentry_dsn: Optional[str] = None

    def endpoint_api_key(self, endpoint: str) -> Optional[str]:
        return dict(self.endpoint_api_keys).get(endpoint)


def _first_env(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return None


def _parse_int(
    env: Mapping[str, str], name: str, default: int, maximum: Optional[int] = None
) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %d", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s=%d must be positive, using %d", name, value, default)
        return default
    if maximum is not None and value > maximum:
        logger.warning("%s=%d exceeds the %d ceiling, using %d", name, value, maximum, maximum)
        return maximum
    return value


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from the environment (after loading .env).

    Passing ``env`` skips .env loading and reads only the given mapping,
    which is how the tests build isolated configurations.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    variant = (env.get("HAZARD_PROMPT_VARIANT") or "structured").strip().lower()
    if variant not in HAZARD_PROMPT_VARIANTS:
        logger.warning(
            "Unknown HAZARD_PROMPT_VARIANT=%r, falling back to 'structured'", variant
        )
        variant = "structured"

    vision = VisionSettings(
        api_key=_first_env(env, "GEMINI_API_KEY", "GOOGLE_VERTEX_API_KEY"),
        project_id=_first_env(env, "PROJECT_ID", "GOOGLE_CLOUD_PROJECT"),
        location=_first_env(env, "LOCATION", "GOOGLE_CLOUD_LOCATION") or DEFAULT_LOCATION,
        model_name=_first_env(env, "MODEL_NAME") or DEFAULT_MODEL_NAME,
    )

    endpoint_keys: Dict[str, str] = {}
    for endpoint, var in ENDPOINT_KEY_VARS.items():
        value = _first_env(env, var)
        if value:
            endpoint_keys[endpoint] = value

    origins = [o.strip() for o in (env.get("CORS_ORIGINS") or "*").split(",") if o.strip()]

    return Settings(
        maps_api_key=_first_env(
            env, "GOOGLE_MAPS_API_KEY", "GOOGLE_PLACES_API_KEY", "GOOGLE_DIRECTIONS_API_KEY"
        ),
        vision=vision,
        hazard_prompt_variant=variant,
        max_image_bytes=_parse_int(
            env, "MAX_IMAGE_BYTES", DEFAULT_MAX_IMAGE_BYTES, maximum=DEFAULT_MAX_IMAGE_BYTES
        ),
        endpoint_api_keys=tuple(sorted(endpoint_keys.items())),
        cors_origins=tuple(origins) or ("*",),
        sentry_dsn=_first_env(env, "SENTRY_DSN"),
    )


def missing_service_keys(settings: Settings, endpoint: Optional[str] = None) -> List[str]:
    """Return the env vars an endpoint (or, with None, any endpoint) still needs."""
    needs = set()
    endpoints = [endpoint] if endpoint else list(_ENDPOINT_REQUIREMENTS)
    for name in endpoints:
        needs.update(_ENDPOINT_REQUIREMENTS.get(name, ()))

    missing = []
    if "maps" in needs and not settings.maps_api_key:
        missing.append("GOOGLE_MAPS_API_KEY")
    if "vision" in needs and not settings.vision.is_configured:
        missing.append("GEMINI_API_KEY")
    return missing
