"""Shared test fixtures for the Powerwall exporter tests."""

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional

import pytest
from prometheus_client import CollectorRegistry

from powerwall_exporter.errors import UnreachableDevice
from powerwall_exporter.exporter import PowerwallExporter
from powerwall_exporter.model import FixedInfo
from powerwall_exporter.responses import decode_response

FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Environment variables read by load_config(), cleared before every test
_ALL_ENV_VARS = (
    "POWERWALL_GATEWAY",
    "POWERWALL_USERNAME",
    "POWERWALL_PASSWORD",
    "PROMETHEUS_NAMESPACE",
    "PROMETHEUS_SUBSYSTEM",
    "EXPORTER_PORT",
    "POLL_INTERVAL",
    "POWERWALL_TIMEOUT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove exporter env vars and isolate from any .env file."""
    for var in _ALL_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def gateway_responses() -> Dict[str, Any]:
    """Raw JSON bodies keyed by endpoint path."""
    return json.loads((FIXTURES_DIR / "gateway_responses.json").read_text())


class FakeClient:
    """Stands in for PowerwallClient, decoding bodies from a dict.

    Tests mutate `bodies` between polls to simulate changing readings, or
    put an exception in `failures` to make an endpoint fail.
    """

    def __init__(self, bodies: Dict[str, Any]):
        self.bodies = bodies
        self.failures: Dict[str, Exception] = {}
        self.calls = []
        self.closed = False

    def _get(self, endpoint: str) -> Any:
        self.calls.append(endpoint)
        if endpoint in self.failures:
            raise self.failures[endpoint]
        return decode_response(endpoint, copy.deepcopy(self.bodies[endpoint]))

    def login(self):
        return self._get("/login/Basic")

    def get_networks(self):
        return self._get("/networks")

    def get_site_info(self):
        return self._get("/site_info")

    def get_operation(self):
        return self._get("/operation")

    def get_config(self):
        return self._get("/config")

    def get_powerwalls(self):
        return self._get("/powerwalls")

    def get_status(self):
        return self._get("/status")

    def get_site_master(self):
        return self._get("/sitemaster")

    def get_aggregates(self):
        return self._get("/meters/aggregates")

    def get_soe(self):
        return self._get("/system_status/soe")

    def get_grid_status(self):
        return self._get("/system_status/grid_status")

    def get_solars(self):
        return self._get("/solars")

    def get_installer(self):
        return self._get("/installer")

    def close(self) -> None:
        self.closed = True

    def fail(self, endpoint: str, error: Optional[Exception] = None) -> None:
        self.failures[endpoint] = error or UnreachableDevice(f"GET {endpoint}: connection refused")


@pytest.fixture()
def fake_client(gateway_responses: Dict[str, Any]) -> FakeClient:
    return FakeClient(gateway_responses)


@pytest.fixture()
def fixed_info() -> FixedInfo:
    return FixedInfo(
        nominal_system_energy_kwh=27.0,
        nominal_system_power_kw=10.0,
        site_name="Home Energy Gateway",
        num_powerwalls=2,
        powerwall_serial_numbers=("TG1234567890AB", "TG1234567890CD"),
        vin="1232100-00-E--TG120321000ABC",
        total_solar_power_rating_watts=15170,
    )


@pytest.fixture()
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture()
def exporter(fixed_info: FixedInfo, registry: CollectorRegistry) -> PowerwallExporter:
    return PowerwallExporter(fixed_info, registry=registry)
