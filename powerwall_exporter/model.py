"""Gateway data model and metrics projection.

This module handles:
- Fetching the fixed site attributes once at startup (FixedInfo)
- Fetching one poll's worth of endpoint responses (DeviceSnapshot)
- Projecting a snapshot onto the flat Metrics model exported to Prometheus
"""

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Dict, List, Tuple

from powerwall_exporter.codecs import NetworkInterface, OperatingMode, SystemStatus
from powerwall_exporter.errors import MalformedVersion
from powerwall_exporter.responses import (
    SOE,
    Aggregates,
    GridStatus,
    MeterDetails,
    Network,
    Operation,
    Powerwalls,
    SiteMaster,
    Status,
)

# Configure module logger
logger = logging.getLogger(__name__)

_VERSION = re.compile(r"^(\d+)\.(\d+)\.(\d+)")


class Meter(Enum):
    """The four aggregate meters reported by /meters/aggregates."""
    SITE = "site"
    LOAD = "load"
    SOLAR = "solar"
    BATTERY = "battery"

    def __str__(self) -> str:
        return self.value


class Direction(Enum):
    """Energy flow direction of a cumulative meter counter."""
    IMPORTED = "to"
    EXPORTED = "from"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class FixedInfo:
    """Site attributes assumed not to change while the exporter runs.

    Attributes:
        nominal_system_energy_kwh: Rated energy the inverter can deliver
        nominal_system_power_kw: Rated power the inverter can deliver
        site_name: Site name configured on the gateway
        num_powerwalls: Number of powerwall units managed by the gateway
        powerwall_serial_numbers: Package serial number of each unit
        vin: Gateway VIN
        total_solar_power_rating_watts: Sum of all solar inverter ratings
    """
    nominal_system_energy_kwh: float
    nominal_system_power_kw: float
    site_name: str
    num_powerwalls: int
    powerwall_serial_numbers: Tuple[str, ...]
    vin: str
    total_solar_power_rating_watts: int


@dataclass(frozen=True)
class DeviceSnapshot:
    """All per-poll endpoint responses from a single poll cycle."""
    networks: Tuple[Network, ...]
    operation: Operation
    status: Status
    powerwalls: Powerwalls
    site_master: SiteMaster
    aggregates: Aggregates
    soe: SOE
    grid_status: GridStatus


@dataclass(frozen=True)
class SoftwareVersion:
    major: int
    minor: int
    release: int

    @property
    def flattened(self) -> int:
        """Version as one comparable integer: 20.49.3 -> 204903."""
        return int(f"{self.major:02d}{self.minor:02d}{self.release:02d}")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.release}"


@dataclass(frozen=True)
class NetworkInterfaceDetails:
    transport: NetworkInterface
    name: str
    active: bool
    enabled: bool
    primary: bool
    signal_strength: int


@dataclass(frozen=True)
class MeterReading:
    """Instantaneous and cumulative readings of one meter.

    Power is in watts, energy in kWh.
    """
    instant_power: float
    instant_reactive_power: float
    instant_apparent_power: float
    instant_average_voltage: float
    instant_total_current: float
    energy_imported: float
    energy_exported: float

    @classmethod
    def from_details(cls, details: MeterDetails) -> "MeterReading":
        return cls(
            instant_power=details.instant_power,
            instant_reactive_power=details.instant_reactive_power,
            instant_apparent_power=details.instant_apparent_power,
            instant_average_voltage=details.instant_average_voltage,
            instant_total_current=details.instant_total_current,
            energy_imported=details.energy_imported,
            energy_exported=details.energy_exported,
        )

    def cumulative(self, direction: Direction) -> float:
        if direction is Direction.IMPORTED:
            return self.energy_imported
        return self.energy_exported


@dataclass(frozen=True)
class Metrics:
    """Flat view of one poll cycle, ready to write into the exporter."""
    fixed: FixedInfo
    mode: OperatingMode
    backup_reserve_percent: float
    uptime: timedelta
    version: SoftwareVersion
    network_interfaces: Dict[NetworkInterface, NetworkInterfaceDetails]
    site_master_running: bool
    site_master_connected_to_tesla: bool
    site_master_supplying_power: bool
    meters: Dict[Meter, MeterReading]
    powerwall_charge_percent: float
    grid_connected: bool
    grid_active: bool
    powerwalls_updating: bool = False

    @property
    def backup_mode(self) -> bool:
        return self.mode is OperatingMode.BACKUP

    @property
    def self_consumption_mode(self) -> bool:
        return self.mode is OperatingMode.SELF_CONSUMPTION


def parse_version(raw: str) -> SoftwareVersion:
    """Extract MAJOR.MINOR.PATCH from the firmware version string.

    Anything after the third numeric group is ignored, so "20.49.0 c9d1dd3d"
    parses as 20.49.0.

    Raises:
        MalformedVersion: If fewer than three leading numeric groups are present
    """
    match = _VERSION.match(raw)
    if match is None:
        raise MalformedVersion(raw)
    major, minor, release = (int(g) for g in match.groups())
    return SoftwareVersion(major=major, minor=minor, release=release)


def fetch_fixed_info(client) -> FixedInfo:
    """Fetch the site attributes that are assumed fixed for the process lifetime.

    Args:
        client: Logged-in PowerwallClient

    Returns:
        FixedInfo built from /site_info, /powerwalls, /config and /solars
    """
    site_info = client.get_site_info()
    powerwalls = client.get_powerwalls()
    config = client.get_config()
    solars = client.get_solars()

    fixed = FixedInfo(
        nominal_system_energy_kwh=site_info.nominal_system_energy_kwh,
        nominal_system_power_kw=site_info.nominal_system_power_kw,
        site_name=site_info.site_name,
        num_powerwalls=len(powerwalls.powerwalls),
        powerwall_serial_numbers=tuple(pw.package_serial_number for pw in powerwalls.powerwalls),
        vin=config.vin,
        total_solar_power_rating_watts=sum(s.power_rating_watts for s in solars),
    )
    logger.info(f"Site {fixed.site_name!r}: {fixed.num_powerwalls} powerwall(s), "
                f"{fixed.total_solar_power_rating_watts} W solar")
    return fixed


def fetch_snapshot(client) -> DeviceSnapshot:
    """Fetch every per-poll endpoint. Any failure aborts the whole snapshot."""
    return DeviceSnapshot(
        networks=tuple(client.get_networks()),
        operation=client.get_operation(),
        status=client.get_status(),
        powerwalls=client.get_powerwalls(),
        site_master=client.get_site_master(),
        aggregates=client.get_aggregates(),
        soe=client.get_soe(),
        grid_status=client.get_grid_status(),
    )


def _network_interfaces(networks: List[Network]) -> Dict[NetworkInterface, NetworkInterfaceDetails]:
    interfaces = {}
    for nw in networks:
        # A later entry for the same transport replaces an earlier one
        interfaces[nw.interface] = NetworkInterfaceDetails(
            transport=nw.interface,
            name=nw.name,
            active=nw.active,
            enabled=nw.enabled,
            primary=nw.primary,
            signal_strength=nw.info.signal_strength,
        )
    return interfaces


def project(snapshot: DeviceSnapshot, fixed: FixedInfo) -> Metrics:
    """Project a device snapshot onto the flat metrics model.

    Args:
        snapshot: Responses from one poll cycle
        fixed: Site attributes fetched at startup

    Returns:
        Metrics for the exporter

    Raises:
        MalformedVersion: If the firmware version cannot be parsed
    """
    aggregates = snapshot.aggregates
    meters = {
        Meter.SITE: MeterReading.from_details(aggregates.site),
        Meter.LOAD: MeterReading.from_details(aggregates.load),
        Meter.SOLAR: MeterReading.from_details(aggregates.solar),
        Meter.BATTERY: MeterReading.from_details(aggregates.battery),
    }

    return Metrics(
        fixed=fixed,
        mode=snapshot.operation.real_mode,
        backup_reserve_percent=snapshot.operation.backup_reserve_percent,
        uptime=snapshot.status.up_time,
        version=parse_version(snapshot.status.version),
        network_interfaces=_network_interfaces(list(snapshot.networks)),
        site_master_running=snapshot.site_master.running,
        site_master_connected_to_tesla=snapshot.site_master.connected_to_tesla,
        site_master_supplying_power=snapshot.site_master.power_supply_mode,
        meters=meters,
        powerwall_charge_percent=snapshot.soe.percentage,
        grid_connected=snapshot.grid_status.status is SystemStatus.GRID_CONNECTED,
        grid_active=snapshot.grid_status.grid_services_active,
        powerwalls_updating=snapshot.powerwalls.updating,
    )
