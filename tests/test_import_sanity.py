"""Import sanity tests.

These lightweight tests verify that the WSGI entrypoint and core modules
can be imported without errors, the minimum bar for a deploy.
"""


def test_app_module_imports():
    """The Flask app module must import without errors."""
    import app  # noqa: F401


def test_wsgi_app_object():
    """Gunicorn's 'app:app' entrypoint must resolve to a Flask instance."""
    from app import app as flask_app
    assert hasattr(flask_app, "route"), "app object is not a Flask instance"


def test_routes_registered():
    from app import app as flask_app
    rules = {r.rule for r in flask_app.url_map.iter_rules()}
    for path in ("/search-places", "/get-direction", "/detect-hazards", "/object-reader", "/healthz"):
        assert path in rules


def test_gunicorn_config_imports():
    import gunicorn_config
    assert gunicorn_config.bind.startswith("0.0.0.0:")
    assert callable(gunicorn_config.when_ready)


def test_core_modules_import():
    from hazard_analysis import normalize_hazard_output
    from image_payload import decode_image_payload
    from place_search import search_places
    from vision_client import VisionModelClient
    assert all([normalize_hazard_output, decode_image_payload, search_places, VisionModelClient])
