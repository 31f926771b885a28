"""Unit tests for the poll/export loop.

Tests verify:
- A successful poll publishes metrics and marks the scrape successful.
- A failed poll leaves counters and counter state untouched.
- The WSGI app polls on /metrics, redirects / and rejects other paths.
- Scheduled polls log failures instead of raising.
- Concurrent polls are serialized.
"""

import threading
import time

import pytest
from prometheus_client import CONTENT_TYPE_LATEST

from powerwall_exporter.errors import DecodeError, GatewayError, UnreachableDevice
from powerwall_exporter.poller import PollEngine

PREFIX = "tesla_energy_gateway_"


@pytest.fixture()
def engine(fake_client, fixed_info, exporter) -> PollEngine:
    return PollEngine(fake_client, fixed_info, exporter)


def _call(app, path: str):
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    body = b"".join(app({"PATH_INFO": path, "REQUEST_METHOD": "GET"}, start_response))
    return captured["status"], captured["headers"], body


def _site_import(registry) -> float:
    return registry.get_sample_value(
        PREFIX + "cumulative_power_total", {"meter": "site", "direction": "to"}
    )


class TestPoll:

    def test_success(self, engine, registry) -> None:
        metrics = engine.poll()

        assert metrics.version.flattened == 204903
        assert registry.get_sample_value(PREFIX + "scrape_success") == 1.0
        assert registry.get_sample_value(PREFIX + "powerwall_charge_percent") == pytest.approx(69.1675560298826)

    def test_failure_leaves_counters_untouched(self, engine, exporter, registry, fake_client) -> None:
        engine.poll()
        state_before = exporter.counter_state.snapshot()
        counter_before = _site_import(registry)

        fake_client.bodies["/meters/aggregates"]["site"]["energy_imported"] = 9999.0
        fake_client.fail("/system_status/grid_status")

        with pytest.raises(UnreachableDevice):
            engine.poll()

        assert exporter.counter_state.snapshot() == state_before
        assert _site_import(registry) == counter_before
        assert registry.get_sample_value(PREFIX + "scrape_success") == 0.0

    def test_decode_failure_is_a_gateway_error(self, engine, fake_client, registry) -> None:
        fake_client.bodies["/operation"]["real_mode"] = "time_of_use"
        with pytest.raises(DecodeError):
            engine.poll()
        assert registry.get_sample_value(PREFIX + "scrape_success") == 0.0

    def test_recovers_after_failure(self, engine, fake_client, registry) -> None:
        fake_client.fail("/status")
        with pytest.raises(GatewayError):
            engine.poll()

        fake_client.failures.clear()
        engine.poll()
        assert registry.get_sample_value(PREFIX + "scrape_success") == 1.0
        assert _site_import(registry) == pytest.approx(3276.1575)

    def test_scheduled_poll(self, engine, fake_client, caplog) -> None:
        assert engine.scheduled_poll() is True

        fake_client.fail("/sitemaster")
        assert engine.scheduled_poll() is False
        assert "Scheduled poll failed" in caplog.text

    def test_out_of_range_uptime_fails_the_poll(self, engine, fake_client, registry) -> None:
        engine.poll()
        fake_client.bodies["/status"]["up_time_seconds"] = "99999999999999999h1.5s"

        with pytest.raises(DecodeError):
            engine.poll()
        assert registry.get_sample_value(PREFIX + "scrape_success") == 0.0
        assert engine.scheduled_poll() is False

    def test_unexpected_error_marks_scrape_failed(self, engine, fake_client, registry, caplog) -> None:
        engine.poll()
        fake_client.fail("/status", RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            engine.poll()
        assert registry.get_sample_value(PREFIX + "scrape_success") == 0.0

        assert engine.scheduled_poll() is False
        assert "unexpected error" in caplog.text

    def test_polls_are_serialized(self, engine, fake_client) -> None:
        in_flight = []
        overlaps = []
        original = fake_client.get_networks

        def slow_get_networks():
            if in_flight:
                overlaps.append(True)
            in_flight.append(True)
            try:
                time.sleep(0.05)
                return original()
            finally:
                in_flight.pop()

        fake_client.get_networks = slow_get_networks
        threads = [threading.Thread(target=engine.poll) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert overlaps == []
        assert fake_client.calls.count("/networks") == 3


class TestWsgiApp:

    def test_metrics(self, engine) -> None:
        status, headers, body = _call(engine.wsgi_app, "/metrics")

        assert status == "200 OK"
        assert headers["Content-Type"] == CONTENT_TYPE_LATEST
        assert headers["Content-Length"] == str(len(body))
        assert b"tesla_energy_gateway_powerwall_charge_percent" in body

    def test_every_scrape_polls(self, engine, fake_client) -> None:
        _call(engine.wsgi_app, "/metrics")
        _call(engine.wsgi_app, "/metrics")
        assert fake_client.calls.count("/system_status/soe") == 2

    def test_failed_poll_is_a_server_error(self, engine, fake_client) -> None:
        fake_client.fail("/networks")

        status, _, body = _call(engine.wsgi_app, "/metrics")

        assert status.startswith("500")
        assert body == b"Failed to poll the energy gateway\n"

    def test_unexpected_error_is_a_server_error(self, engine, fake_client, registry) -> None:
        fake_client.bodies["/status"]["up_time_seconds"] = "99999999999999999h1.5s"
        status, _, _ = _call(engine.wsgi_app, "/metrics")
        assert status.startswith("500")

        fake_client.fail("/status", RuntimeError("boom"))
        status, _, body = _call(engine.wsgi_app, "/metrics")
        assert status.startswith("500")
        assert body == b"Failed to poll the energy gateway\n"
        assert registry.get_sample_value(PREFIX + "scrape_success") == 0.0

    def test_root_redirects_to_metrics(self, engine, fake_client) -> None:
        status, headers, _ = _call(engine.wsgi_app, "/")
        assert status.startswith("302")
        assert headers["Location"] == "/metrics"
        assert fake_client.calls == []

    def test_unknown_path(self, engine, fake_client) -> None:
        status, _, _ = _call(engine.wsgi_app, "/favicon.ico")
        assert status.startswith("404")
        assert fake_client.calls == []
