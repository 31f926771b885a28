"""Poll/export loop.

This module handles:
- Running one poll cycle: fetch snapshot, project, publish
- Serializing polls triggered by the scheduler and by scrapes
- Serving /metrics as a WSGI application that polls before responding
"""

import logging
import threading
import time

from prometheus_client import CONTENT_TYPE_LATEST

from powerwall_exporter.errors import GatewayError
from powerwall_exporter.exporter import PowerwallExporter
from powerwall_exporter.model import FixedInfo, Metrics, fetch_snapshot, project

# Configure module logger
logger = logging.getLogger(__name__)


class PollEngine:
    """Polls the gateway and publishes the result into the exporter.

    Polls mutate the exporter's cumulative counter state, so only one runs
    at a time. A trigger that arrives during an in-flight poll waits for it
    to finish and then polls again.

    Attributes:
        client: Logged-in PowerwallClient
        fixed: Site attributes fetched at startup
        exporter: Exporter receiving each poll's metrics
    """

    def __init__(self, client, fixed: FixedInfo, exporter: PowerwallExporter):
        self.client = client
        self.fixed = fixed
        self.exporter = exporter
        self._lock = threading.Lock()

    def poll(self) -> Metrics:
        """Run one full poll cycle.

        The exporter is only touched after every endpoint has been fetched,
        decoded and projected, so a failed cycle leaves the counter state
        as it was. Any failure marks the scrape as failed before it propagates.

        Returns:
            The metrics published by this cycle

        Raises:
            GatewayError: If any endpoint fails or the snapshot cannot be projected
        """
        with self._lock:
            start_time = time.time()
            try:
                snapshot = fetch_snapshot(self.client)
                metrics = project(snapshot, self.fixed)
                self.exporter.update(metrics)
            except Exception:
                self.exporter.set_scrape_success(False, time.time() - start_time)
                raise

            elapsed = time.time() - start_time
            self.exporter.set_scrape_success(True, elapsed)
            logger.info(f"Successfully polled the gateway stats in {elapsed:.3f}s")
            return metrics

    def scheduled_poll(self) -> bool:
        """Poll from the interval timer. Failures are logged, never raised.

        Returns:
            True if the poll succeeded, False otherwise
        """
        try:
            self.poll()
            return True
        except GatewayError as e:
            logger.error(f"Scheduled poll failed: {e}")
            return False
        except Exception as e:
            logger.error(f"Scheduled poll failed (unexpected error): {e}")
            return False

    def wsgi_app(self, environ, start_response):
        """WSGI application serving /metrics.

        Each request to /metrics triggers a fresh poll. A failed poll is
        answered with 500; there is no last-good fallback.
        """
        path = environ.get("PATH_INFO", "/")

        if path == "/":
            start_response("302 Found", [("Location", "/metrics"), ("Content-Type", "text/plain")])
            return [b"See /metrics\n"]

        if path != "/metrics":
            start_response("404 Not Found", [("Content-Type", "text/plain")])
            return [b"Not Found\n"]

        try:
            self.poll()
        except Exception as e:
            if isinstance(e, GatewayError):
                logger.error(f"Poll for scrape failed: {e}")
            else:
                logger.error(f"Poll for scrape failed (unexpected error): {e}")
            start_response("500 Internal Server Error", [("Content-Type", "text/plain")])
            return [b"Failed to poll the energy gateway\n"]

        output = self.exporter.render()
        start_response("200 OK", [
            ("Content-Type", CONTENT_TYPE_LATEST),
            ("Content-Length", str(len(output))),
        ])
        return [output]
