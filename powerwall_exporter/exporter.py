"""Prometheus metrics exporter module.

This module handles:
- Defining Prometheus metrics (gauges, counters) in an owned registry
- Updating metrics from a projected Metrics snapshot
- Publishing cumulative meter energy as monotonically increasing counters
"""

import logging
import time
from typing import List, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, disable_created_metrics, generate_latest

from powerwall_exporter.counters import CounterAnomaly, CumulativeCounterState
from powerwall_exporter.model import Direction, FixedInfo, Metrics

# Configure module logger
logger = logging.getLogger(__name__)

# Counters expose only their _total series
disable_created_metrics()

INTERFACE = "interface"
METER = "meter"
DIRECTION = "direction"
POWER_TYPE = "powerType"
TRUE_POWER = "truePower"
REACTIVE_POWER = "reactivePower"
APPARENT_POWER = "apparentPower"


def _flag(value: bool) -> float:
    return 1.0 if value else 0.0


class PowerwallExporter:
    """Prometheus exporter for Tesla Energy Gateway metrics.

    Every instrument is registered once, in the registry owned by this
    exporter, and then updated in place on each poll. Metric names are
    prefixed with {namespace}_{subsystem}_, e.g.
    tesla_energy_gateway_powerwall_charge_percent.

    Exposes, among others:
    - powerwall_charge_percent: State of energy of the powerwalls
    - instant_power{meter, powerType}: Instantaneous power per meter
    - cumulative_power{meter, direction}: Lifetime energy per meter (counter, kWh)
    - network_active{interface}: Whether each network interface is usable
    - scrape_success: Whether the last poll succeeded (1=success, 0=failure)

    Attributes:
        fixed: Site attributes fetched at startup
        registry: The registry holding this exporter's instruments
        counter_state: Last-seen cumulative value per meter and direction
    """

    def __init__(
        self,
        fixed: FixedInfo,
        namespace: str = "tesla",
        subsystem: str = "energy_gateway",
        registry: Optional[CollectorRegistry] = None
    ):
        """Initialize the exporter.

        Args:
            fixed: Site attributes fetched at startup
            namespace: Prometheus namespace for every metric
            subsystem: Prometheus subsystem for every metric
            registry: Optional registry. If None, a new private registry is created.
        """
        self.fixed = fixed
        self.registry = registry if registry is not None else CollectorRegistry()
        self.counter_state = CumulativeCounterState()

        def gauge(name: str, documentation: str, labels=()) -> Gauge:
            return Gauge(name, documentation, list(labels), namespace=namespace,
                         subsystem=subsystem, registry=self.registry)

        # Fixed site attributes
        self._nominal_system_energy_kwh = gauge(
            "nominal_system_energy_kWh",
            "nominal rated energy that can be delivered by the inverter."
        )
        self._nominal_system_power_kw = gauge(
            "nominal_system_power_kW",
            "nominal rated power that can be delivered by the inverter."
        )
        self._num_powerwalls = gauge(
            "num_powerwalls",
            "Number of powerwall battery systems managed by the energy gateway"
        )
        self._total_solar_rating_watts = gauge(
            "total_solar_rating_W",
            "rated total power output of all solar arrays connected to the inverter"
        )

        # Operating mode and status
        self._powerwall_charge_percent = gauge(
            "powerwall_charge_percent",
            "percent of nominal powerwall power available for supply generation"
        )
        self._backup_mode = gauge(
            "operating_in_backup_only_mode",
            "if 1, the powerwalls are only consumed for backup power"
        )
        self._self_consumption_mode = gauge(
            "operating_in_self_consumption_mode",
            "if 1, the powerwalls cycle between charging and discharging"
        )
        self._backup_reserve_percent = gauge(
            "backup_reserve_percent",
            "Percent of battery capacity not used unless the grid is out"
        )
        self._uptime_seconds = gauge(
            "uptime_seconds",
            "Runtime of the Tesla energy gateway"
        )
        self._powerwalls_updating = gauge(
            "powerwalls_updating",
            "if 1, the powerwalls are applying a firmware update"
        )

        # Firmware version
        self._major_version = gauge(
            "major_version",
            "The major version of the gateway software. In version 1.2.3, the major version is the 1"
        )
        self._minor_version = gauge(
            "minor_version",
            "The minor version of the gateway software. In version 1.2.3, the minor version is the 2"
        )
        self._release_version = gauge(
            "release_version",
            "The release version of the gateway software. In version 1.2.3, the release version is the 3"
        )
        self._flattened_version = gauge(
            "flattened_version",
            "The version of the gateway software, flattened. Version 10.12.7 would be 101207"
        )

        # Network interfaces
        self._network_active = gauge(
            "network_active",
            "if 1, the given network interface appears to be usable",
            [INTERFACE]
        )
        self._network_enabled = gauge(
            "network_enabled",
            "if 1, the given network interface is administratively enabled",
            [INTERFACE]
        )
        self._network_primary = gauge(
            "network_primary",
            "if 1, the given network interface is the preferred interface",
            [INTERFACE]
        )
        self._network_signal_strength = gauge(
            "network_signal_strength",
            "signal to noise ratio in dB for the interface. Only populated for cellular",
            [INTERFACE]
        )

        # Site master
        self._site_master_running = gauge(
            "sitemaster_running",
            "if 1, the site master is running"
        )
        self._site_master_connected_to_tesla = gauge(
            "site_master_connected_to_tesla",
            "if 1, the site master can communicate with Tesla"
        )
        self._site_master_supplying_power = gauge(
            "site_master_supplying_power",
            "if 1, the site master is supplying power instead of the grid"
        )

        # Meters
        self._instant_power = gauge(
            "instant_power",
            "power measured by the given meter at a moment in time",
            [METER, POWER_TYPE]
        )
        self._instant_average_voltage = gauge(
            "instant_average_voltage",
            "electrical potential measured by the given meter at a moment in time, in units of volts",
            [METER]
        )
        self._instant_total_current = gauge(
            "instant_total_current_amps",
            "electrical current measured by the given meter at a moment in time, in units of amperes",
            [METER]
        )
        self._cumulative_power = Counter(
            "cumulative_power",
            "cumulative power measured over the lifetime of the given meter, in units of kWh",
            [METER, DIRECTION],
            namespace=namespace,
            subsystem=subsystem,
            registry=self.registry
        )

        # Grid
        self._grid_connected = gauge(
            "grid_connected",
            "if 1, the grid is available to supply power"
        )
        self._grid_active = gauge(
            "grid_active",
            "if 1, the grid is actively supplying power"
        )

        # Operational metrics (no labels)
        self._scrape_success = gauge(
            "scrape_success",
            "Whether the last poll of the gateway succeeded (1=success, 0=failure)"
        )
        self._scrape_timestamp = gauge(
            "scrape_timestamp",
            "Unix timestamp of the last poll of the gateway"
        )
        self._scrape_duration = gauge(
            "scrape_duration_seconds",
            "Duration of the last poll of the gateway in seconds"
        )

        self._nominal_system_energy_kwh.set(fixed.nominal_system_energy_kwh)
        self._nominal_system_power_kw.set(fixed.nominal_system_power_kw)
        self._num_powerwalls.set(fixed.num_powerwalls)
        self._total_solar_rating_watts.set(fixed.total_solar_power_rating_watts)

    def update(self, metrics: Metrics) -> List[CounterAnomaly]:
        """Update all metrics from one poll's projection.

        Args:
            metrics: Projected metrics from a fully successful poll

        Returns:
            Cumulative readings that went backwards during this update
        """
        self._powerwall_charge_percent.set(metrics.powerwall_charge_percent)
        # Autonomous, Scheduler and SiteControl modes have no dedicated gauge
        self._backup_mode.set(_flag(metrics.backup_mode))
        self._self_consumption_mode.set(_flag(metrics.self_consumption_mode))
        self._backup_reserve_percent.set(metrics.backup_reserve_percent)
        self._uptime_seconds.set(metrics.uptime.total_seconds())
        self._powerwalls_updating.set(_flag(metrics.powerwalls_updating))

        self._major_version.set(metrics.version.major)
        self._minor_version.set(metrics.version.minor)
        self._release_version.set(metrics.version.release)
        self._flattened_version.set(metrics.version.flattened)

        for net in metrics.network_interfaces.values():
            interface = str(net.transport)
            self._network_enabled.labels(interface=interface).set(_flag(net.enabled))
            self._network_active.labels(interface=interface).set(_flag(net.active))
            self._network_primary.labels(interface=interface).set(_flag(net.primary))
            self._network_signal_strength.labels(interface=interface).set(net.signal_strength)

        self._site_master_running.set(_flag(metrics.site_master_running))
        self._site_master_connected_to_tesla.set(_flag(metrics.site_master_connected_to_tesla))
        self._site_master_supplying_power.set(_flag(metrics.site_master_supplying_power))

        anomalies = []
        for meter, reading in metrics.meters.items():
            name = str(meter)
            self._instant_power.labels(meter=name, powerType=TRUE_POWER).set(reading.instant_power)
            self._instant_power.labels(meter=name, powerType=REACTIVE_POWER).set(reading.instant_reactive_power)
            self._instant_power.labels(meter=name, powerType=APPARENT_POWER).set(reading.instant_apparent_power)
            self._instant_average_voltage.labels(meter=name).set(reading.instant_average_voltage)
            self._instant_total_current.labels(meter=name).set(reading.instant_total_current)

            for direction in Direction:
                increment, anomaly = self.counter_state.advance(meter, direction, reading.cumulative(direction))
                if anomaly is not None:
                    anomalies.append(anomaly)
                    continue
                self._cumulative_power.labels(meter=name, direction=str(direction)).inc(increment)

        self._grid_connected.set(_flag(metrics.grid_connected))
        self._grid_active.set(_flag(metrics.grid_active))

        logger.debug(f"Metrics updated: firmware {metrics.version}, "
                     f"charge {metrics.powerwall_charge_percent:.1f}%")
        return anomalies

    def set_scrape_success(self, success: bool, duration: float) -> None:
        """Update operational metrics after a poll attempt.

        Args:
            success: Whether the poll succeeded
            duration: How long the poll took in seconds
        """
        self._scrape_success.set(1 if success else 0)
        self._scrape_timestamp.set(time.time())
        self._scrape_duration.set(duration)

    def render(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
