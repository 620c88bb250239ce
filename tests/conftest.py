"""Shared fixtures for the WalkAid test suite.

Provides a Flask test client wired to a fixed, fully configured Settings
object so tests never depend on the developer's environment or .env file.
"""

import base64
import os

import pytest

# Set keys BEFORE importing app (settings are loaded at import time).
os.environ.setdefault("GOOGLE_MAPS_API_KEY", "fake-maps-key")
os.environ.setdefault("GEMINI_API_KEY", "fake-gemini-key")
os.environ.pop("SENTRY_DSN", None)

from app import app  # noqa: E402
from settings import load_settings  # noqa: E402

CLIENT_API_KEY = "test-client-key"

TEST_ENV = {
    "GOOGLE_MAPS_API_KEY": "fake-maps-key",
    "GEMINI_API_KEY": "fake-gemini-key",
    "SEARCH_PLACES_FUNCTION_API_KEY": CLIENT_API_KEY,
    "GET_DIRECTION_FUNCTION_API_KEY": CLIENT_API_KEY,
    "DETECT_HAZARDS_FUNCTION_API_KEY": CLIENT_API_KEY,
    "OBJECT_READER_FUNCTION_API_KEY": CLIENT_API_KEY,
}

# Smallest payload that looks like a JPEG to a human reader.
FAKE_JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00fake-image-bytes"
FAKE_JPEG_B64 = base64.b64encode(FAKE_JPEG).decode("ascii")


@pytest.fixture(autouse=True)
def _test_settings():
    """Install a deterministic Settings object for every test."""
    original = app.config["WALKAID_SETTINGS"]
    app.config["WALKAID_SETTINGS"] = load_settings(env=TEST_ENV)
    yield
    app.config["WALKAID_SETTINGS"] = original


@pytest.fixture()
def use_settings():
    """Swap in settings built from TEST_ENV plus overrides."""
    def _apply(**overrides):
        env = dict(TEST_ENV)
        for key, value in overrides.items():
            if value is None:
                env.pop(key, None)
            else:
                env[key] = value
        app.config["WALKAID_SETTINGS"] = load_settings(env=env)
        return app.config["WALKAID_SETTINGS"]
    return _apply


@pytest.fixture()
def client():
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


@pytest.fixture()
def api_headers():
    return {"X-API-Key": CLIENT_API_KEY}
