"""
Gunicorn config.  Run with:

    gunicorn app:app -c gunicorn_config.py

Requests are stateless, so workers share nothing.  The when_ready hook runs
the post-deploy smoke test against localhost once the server is accepting
connections.
"""

import logging
import os
import threading

bind = f"0.0.0.0:{os.environ.get('PORT', '8080')}"
workers = int(os.environ.get("WEB_CONCURRENCY", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
# Gemini calls on large frames can take several seconds.
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "60"))


def when_ready(server):
    """Run smoke test in a background thread once gunicorn is listening."""
    port = os.environ.get("PORT", "8080")
    base_url = f"http://127.0.0.1:{port}"

    def _run_smoke():
        import time
        time.sleep(2)  # brief grace period for workers to finish forking
        logger = logging.getLogger("gunicorn.error")
        try:
            from smoke_test import run_tests
            logger.info("Post-deploy smoke test starting against %s", base_url)
            if run_tests(base_url):
                logger.info("Post-deploy smoke test PASSED")
            else:
                logger.error("Post-deploy smoke test FAILED")
        except Exception:
            logger.exception("Post-deploy smoke test crashed")

    if os.environ.get("SKIP_SMOKE_TEST") == "1":
        return
    t = threading.Thread(target=_run_smoke, daemon=True)
    t.start()
