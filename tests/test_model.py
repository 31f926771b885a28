"""Unit tests for the data model and metrics projection."""

from datetime import timedelta

import pytest

from powerwall_exporter.codecs import NetworkInterface, OperatingMode
from powerwall_exporter.errors import MalformedVersion, UnreachableDevice
from powerwall_exporter.model import (
    DeviceSnapshot,
    Direction,
    Meter,
    SoftwareVersion,
    fetch_fixed_info,
    fetch_snapshot,
    parse_version,
    project,
)


class TestVersion:

    def test_parse_and_flatten(self) -> None:
        version = parse_version("20.49.3")
        assert (version.major, version.minor, version.release) == (20, 49, 3)
        assert version.flattened == 204903

    def test_trailing_text_is_ignored(self) -> None:
        version = parse_version("21.44.1 c58c2df3")
        assert version == SoftwareVersion(21, 44, 1)
        assert version.flattened == 214401

    def test_single_digit_components_are_padded(self) -> None:
        assert parse_version("1.2.3").flattened == 10203

    @pytest.mark.parametrize("raw", ["", "20.49", "v20.49.3", "twenty"])
    def test_malformed(self, raw: str) -> None:
        with pytest.raises(MalformedVersion) as exc_info:
            parse_version(raw)
        assert exc_info.value.raw == raw


class TestFetch:

    def test_fixed_info(self, fake_client) -> None:
        fixed = fetch_fixed_info(fake_client)
        assert fixed.site_name == "Home Energy Gateway"
        assert fixed.nominal_system_energy_kwh == 27.0
        assert fixed.nominal_system_power_kw == 10.0
        assert fixed.num_powerwalls == 2
        assert fixed.powerwall_serial_numbers == ("TG1234567890AB", "TG1234567890CD")
        assert fixed.vin == "1232100-00-E--TG120321000ABC"
        assert fixed.total_solar_power_rating_watts == 15170

    def test_snapshot_fetches_every_poll_endpoint(self, fake_client) -> None:
        snapshot = fetch_snapshot(fake_client)
        assert isinstance(snapshot, DeviceSnapshot)
        assert set(fake_client.calls) == {
            "/networks",
            "/operation",
            "/status",
            "/powerwalls",
            "/sitemaster",
            "/meters/aggregates",
            "/system_status/soe",
            "/system_status/grid_status",
        }
        assert len(snapshot.networks) == 3

    def test_snapshot_fails_as_a_whole(self, fake_client) -> None:
        fake_client.fail("/system_status/soe")
        with pytest.raises(UnreachableDevice):
            fetch_snapshot(fake_client)


class TestProject:

    def test_projection(self, fake_client, fixed_info) -> None:
        metrics = project(fetch_snapshot(fake_client), fixed_info)

        assert metrics.fixed is fixed_info
        assert metrics.mode is OperatingMode.SELF_CONSUMPTION
        assert metrics.self_consumption_mode is True
        assert metrics.backup_mode is False
        assert metrics.backup_reserve_percent == pytest.approx(24.6)
        assert int(metrics.uptime.total_seconds()) == 518072
        assert metrics.version.flattened == 204903
        assert metrics.site_master_running is True
        assert metrics.site_master_connected_to_tesla is True
        assert metrics.site_master_supplying_power is False
        assert metrics.powerwall_charge_percent == pytest.approx(69.1675560298826)
        assert metrics.grid_connected is True
        assert metrics.grid_active is False
        assert metrics.powerwalls_updating is False

    def test_network_interfaces(self, fake_client, fixed_info) -> None:
        metrics = project(fetch_snapshot(fake_client), fixed_info)
        interfaces = metrics.network_interfaces
        assert set(interfaces) == set(NetworkInterface)
        assert interfaces[NetworkInterface.CELLULAR].signal_strength == 71
        assert interfaces[NetworkInterface.ETHERNET].primary is True
        assert interfaces[NetworkInterface.WIFI].enabled is False

    def test_meters(self, fake_client, fixed_info) -> None:
        metrics = project(fetch_snapshot(fake_client), fixed_info)
        assert set(metrics.meters) == set(Meter)
        site = metrics.meters[Meter.SITE]
        assert site.cumulative(Direction.IMPORTED) == pytest.approx(3276.1575)
        assert site.cumulative(Direction.EXPORTED) == pytest.approx(1136.916666666666)
        assert metrics.meters[Meter.BATTERY].instant_total_current == pytest.approx(45.2)
        assert metrics.meters[Meter.LOAD].instant_power == pytest.approx(1546.2250101725263)

    def test_backup_mode(self, fake_client, fixed_info) -> None:
        fake_client.bodies["/operation"]["real_mode"] = "backup"
        metrics = project(fetch_snapshot(fake_client), fixed_info)
        assert metrics.backup_mode is True
        assert metrics.self_consumption_mode is False

    def test_other_modes_set_neither_flag(self, fake_client, fixed_info) -> None:
        fake_client.bodies["/operation"]["real_mode"] = "autonomous"
        metrics = project(fetch_snapshot(fake_client), fixed_info)
        assert metrics.backup_mode is False
        assert metrics.self_consumption_mode is False

    def test_islanded_is_not_grid_connected(self, fake_client, fixed_info) -> None:
        fake_client.bodies["/system_status/grid_status"]["grid_status"] = "SystemIslandedActive"
        metrics = project(fetch_snapshot(fake_client), fixed_info)
        assert metrics.grid_connected is False

    def test_malformed_version_fails_projection(self, fake_client, fixed_info) -> None:
        fake_client.bodies["/status"]["version"] = "20.49"
        with pytest.raises(MalformedVersion):
            project(fetch_snapshot(fake_client), fixed_info)

    def test_missing_uptime_is_zero(self, fake_client, fixed_info) -> None:
        del fake_client.bodies["/status"]["up_time_seconds"]
        metrics = project(fetch_snapshot(fake_client), fixed_info)
        assert metrics.uptime == timedelta(0)
