"""Typed records for Tesla Energy Gateway API responses.

This module handles:
- Mapping each endpoint's JSON body onto a frozen dataclass
- Applying the scalar codecs to timestamp, duration, timezone and enum fields
- Reporting the endpoint and raw value when a body cannot be decoded

Unknown JSON fields are ignored. Missing scalar fields take their zero value,
except enumerations, which must be present and recognised.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar
from zoneinfo import ZoneInfo

from powerwall_exporter.codecs import (
    ZERO_TIME,
    GridState,
    NetworkInterface,
    OperatingMode,
    SystemStatus,
    decode_enum,
    parse_float_seconds,
    parse_structured_duration,
    parse_timestamp,
    parse_timezone,
)
from powerwall_exporter.errors import DecodeError

T = TypeVar("T")


def _object(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise DecodeError(f"{what}: expected a JSON object, got {type(value).__name__}")
    return value


def _typed(data: Dict[str, Any], key: str, types: tuple, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass, but JSON true/false is never a number here
    if isinstance(value, bool) and bool not in types:
        raise DecodeError(f"field {key!r}: unexpected value {value!r}")
    if not isinstance(value, types):
        raise DecodeError(f"field {key!r}: unexpected value {value!r}")
    return value


def _str(data: Dict[str, Any], key: str) -> str:
    return _typed(data, key, (str,), "")


def _int(data: Dict[str, Any], key: str) -> int:
    return _typed(data, key, (int,), 0)


def _float(data: Dict[str, Any], key: str) -> float:
    return float(_typed(data, key, (int, float), 0.0))


def _bool(data: Dict[str, Any], key: str) -> bool:
    return _typed(data, key, (bool,), False)


def _nested(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    return _object(data.get(key) or {}, key)


def _list(data: Dict[str, Any], key: str) -> List[Any]:
    return _typed(data, key, (list,), [])


def _enum(data: Dict[str, Any], key: str, enum_cls: Type[Any]) -> Any:
    if key not in data or data[key] is None:
        raise DecodeError(f"field {key!r}: missing {enum_cls.__name__}")
    return decode_enum(enum_cls, data[key])


def _timestamp(data: Dict[str, Any], key: str) -> datetime:
    value = data.get(key)
    if value is None:
        return ZERO_TIME
    return parse_timestamp(value)


@dataclass(frozen=True)
class LoginResponse:
    email: str
    first_name: str
    last_name: str
    roles: List[str]
    token: str
    provider: str
    login_time: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoginResponse":
        return cls(
            email=_str(data, "email"),
            first_name=_str(data, "firstname"),
            last_name=_str(data, "lastname"),
            roles=[str(r) for r in _list(data, "roles")],
            token=_str(data, "token"),
            provider=_str(data, "provider"),
            login_time=_str(data, "loginTime"),
        )


@dataclass(frozen=True)
class IPAddress:
    address: str
    netmask: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IPAddress":
        return cls(address=_str(data, "ip"), netmask=_int(data, "netmask"))


@dataclass(frozen=True)
class NetworkInfo:
    """Live state of a network interface (iface_network_info)."""
    name: str = ""
    networks: List[IPAddress] = field(default_factory=list)
    gateway: str = ""
    interface: Optional[NetworkInterface] = None
    state: str = ""
    state_reason: str = ""
    signal_strength: int = 0
    hardware_address: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkInfo":
        raw_interface = data.get("interface")
        return cls(
            name=_str(data, "network_name"),
            networks=[IPAddress.from_dict(_object(ip, "networks")) for ip in _list(data, "networks")],
            gateway=_str(data, "gateway"),
            # Interfaces that never came up report no info block at all
            interface=None if raw_interface is None else decode_enum(NetworkInterface, raw_interface),
            state=_str(data, "state"),
            state_reason=_str(data, "state_reason"),
            signal_strength=_int(data, "signal_strength"),
            hardware_address=_str(data, "hw_address"),
        )


@dataclass(frozen=True)
class Network:
    """One entry from /networks."""
    name: str
    interface: NetworkInterface
    dhcp: bool
    enabled: bool
    extra_ips: List[IPAddress]
    active: bool
    primary: bool
    info: NetworkInfo

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Network":
        return cls(
            name=_str(data, "network_name"),
            interface=_enum(data, "interface", NetworkInterface),
            dhcp=_bool(data, "dhcp"),
            enabled=_bool(data, "enabled"),
            extra_ips=[IPAddress.from_dict(_object(ip, "extra_ips")) for ip in _list(data, "extra_ips")],
            active=_bool(data, "active"),
            primary=_bool(data, "primary"),
            info=NetworkInfo.from_dict(_nested(data, "iface_network_info")),
        )


@dataclass(frozen=True)
class GridCode:
    code: str
    voltage: int
    frequency: int
    phase_setting: str
    country: str
    state: str
    distributor: str
    utility: str
    retailer: str
    region: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GridCode":
        return cls(
            code=_str(data, "grid_code"),
            voltage=_int(data, "grid_voltage_setting"),
            frequency=_int(data, "grid_freq_setting"),
            phase_setting=_str(data, "grid_phase_setting"),
            country=_str(data, "country"),
            state=_str(data, "state"),
            distributor=_str(data, "distributor"),
            utility=_str(data, "utility"),
            retailer=_str(data, "retailer"),
            region=_str(data, "region"),
        )


@dataclass(frozen=True)
class SiteInfo:
    max_system_energy_kwh: int
    max_system_power_kw: int
    site_name: str
    timezone: Optional[ZoneInfo]
    max_site_meter_power_kw: int
    min_site_meter_power_kw: int
    nominal_system_energy_kwh: float
    nominal_system_power_kw: float
    grid_code: GridCode

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiteInfo":
        raw_tz = data.get("timezone")
        return cls(
            max_system_energy_kwh=_int(data, "max_system_energy_kWh"),
            max_system_power_kw=_int(data, "max_system_power_kW"),
            site_name=_str(data, "site_name"),
            timezone=None if raw_tz is None else parse_timezone(raw_tz),
            max_site_meter_power_kw=_int(data, "max_site_meter_power_kW"),
            min_site_meter_power_kw=_int(data, "min_site_meter_power_kW"),
            nominal_system_energy_kwh=_float(data, "nominal_system_energy_kWh"),
            nominal_system_power_kw=_float(data, "nominal_system_power_kW"),
            grid_code=GridCode.from_dict(_nested(data, "grid_code")),
        )


@dataclass(frozen=True)
class Operation:
    real_mode: OperatingMode
    backup_reserve_percent: float
    freq_shift_load_shed_soe: float
    freq_shift_load_shed_delta_f: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Operation":
        return cls(
            real_mode=_enum(data, "real_mode", OperatingMode),
            backup_reserve_percent=_float(data, "backup_reserve_percent"),
            freq_shift_load_shed_soe=_float(data, "freq_shift_load_shed_soe"),
            freq_shift_load_shed_delta_f=_float(data, "freq_shift_load_shed_delta_f"),
        )


@dataclass(frozen=True)
class Config:
    vin: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        return cls(vin=_str(data, "vin"))


@dataclass(frozen=True)
class DiagnosticCheck:
    name: str
    status: str
    start_time: datetime
    end_time: datetime
    message: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiagnosticCheck":
        return cls(
            name=_str(data, "name"),
            status=_str(data, "status"),
            start_time=_timestamp(data, "start_time"),
            end_time=_timestamp(data, "end_time"),
            message=_str(data, "message"),
        )


@dataclass(frozen=True)
class Diagnostic:
    name: str = ""
    category: str = ""
    disruptive: bool = False
    checks: List[DiagnosticCheck] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Diagnostic":
        return cls(
            name=_str(data, "name"),
            category=_str(data, "category"),
            disruptive=_bool(data, "disruptive"),
            checks=[DiagnosticCheck.from_dict(_object(c, "checks")) for c in _list(data, "checks")],
        )


@dataclass(frozen=True)
class Powerwall:
    package_part_number: str
    package_serial_number: str
    type: str
    grid_state: GridState
    grid_reconnection_time: timedelta
    under_phase_detection: bool
    updating: bool
    commissioning_diagnostic: Diagnostic
    update_diagnostic: Diagnostic

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Powerwall":
        raw_reconnect = data.get("grid_reconnection_time_seconds")
        return cls(
            package_part_number=_str(data, "PackagePartNumber"),
            package_serial_number=_str(data, "PackageSerialNumber"),
            type=_str(data, "type"),
            grid_state=_enum(data, "grid_state", GridState),
            grid_reconnection_time=timedelta(0) if raw_reconnect is None else parse_float_seconds(raw_reconnect),
            under_phase_detection=_bool(data, "under_phase_detection"),
            updating=_bool(data, "updating"),
            commissioning_diagnostic=Diagnostic.from_dict(_nested(data, "commissioning_diagnostic")),
            update_diagnostic=Diagnostic.from_dict(_nested(data, "update_diagnostic")),
        )


@dataclass(frozen=True)
class Powerwalls:
    enumerating: bool
    updating: bool
    checking_if_offgrid: bool
    running_phase_detection: bool
    phase_detection_last_error: str
    bubble_shedding: bool
    on_grid_check_error: str
    grid_qualifying: bool
    grid_code_validating: bool
    phase_detection_not_available: bool
    powerwalls: List[Powerwall]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Powerwalls":
        return cls(
            enumerating=_bool(data, "enumerating"),
            updating=_bool(data, "updating"),
            checking_if_offgrid=_bool(data, "checking_if_offgrid"),
            running_phase_detection=_bool(data, "running_phase_detection"),
            phase_detection_last_error=_str(data, "phase_detection_last_error"),
            bubble_shedding=_bool(data, "bubble_shedding"),
            on_grid_check_error=_str(data, "on_grid_check_error"),
            grid_qualifying=_bool(data, "grid_qualifying"),
            grid_code_validating=_bool(data, "grid_code_validating"),
            phase_detection_not_available=_bool(data, "phase_detection_not_available"),
            powerwalls=[Powerwall.from_dict(_object(pw, "powerwalls")) for pw in _list(data, "powerwalls")],
        )


@dataclass(frozen=True)
class Status:
    start_time: datetime
    up_time: timedelta
    is_new: bool
    version: str
    git_hash: str
    commission_count: int
    device_type: str
    sync_type: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Status":
        raw_uptime = data.get("up_time_seconds")
        return cls(
            start_time=_timestamp(data, "start_time"),
            up_time=timedelta(0) if raw_uptime is None else parse_structured_duration(raw_uptime),
            is_new=_bool(data, "is_new"),
            version=_str(data, "version"),
            git_hash=_str(data, "git_hash"),
            commission_count=_int(data, "commission_count"),
            device_type=_str(data, "device_type"),
            sync_type=_str(data, "sync_type"),
        )


@dataclass(frozen=True)
class SiteMaster:
    status: str
    running: bool
    connected_to_tesla: bool
    power_supply_mode: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiteMaster":
        return cls(
            status=_str(data, "status"),
            running=_bool(data, "running"),
            connected_to_tesla=_bool(data, "connected_to_tesla"),
            power_supply_mode=_bool(data, "power_supply_mode"),
        )


@dataclass(frozen=True)
class MeterDetails:
    """One meter from /meters/aggregates. Energy counters are in kWh."""
    last_communication_time: datetime
    instant_power: float
    instant_reactive_power: float
    instant_apparent_power: float
    frequency: float
    energy_exported: float
    energy_imported: float
    instant_average_voltage: float
    instant_total_current: float
    i_a_current: float
    i_b_current: float
    i_c_current: float
    last_phase_voltage_communication_time: datetime
    last_phase_power_communication_time: datetime
    timeout: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeterDetails":
        return cls(
            last_communication_time=_timestamp(data, "last_communication_time"),
            instant_power=_float(data, "instant_power"),
            instant_reactive_power=_float(data, "instant_reactive_power"),
            # sic, the gateway misspells this key
            instant_apparent_power=_float(data, "instant_apparant_power"),
            frequency=_float(data, "frequency"),
            energy_exported=_float(data, "energy_exported"),
            energy_imported=_float(data, "energy_imported"),
            instant_average_voltage=_float(data, "instant_average_voltage"),
            instant_total_current=_float(data, "instant_total_current"),
            i_a_current=_float(data, "i_a_current"),
            i_b_current=_float(data, "i_b_current"),
            i_c_current=_float(data, "i_c_current"),
            last_phase_voltage_communication_time=_timestamp(data, "last_phase_voltage_communication_time"),
            last_phase_power_communication_time=_timestamp(data, "last_phase_power_communication_time"),
            timeout=_int(data, "timeout"),
        )


@dataclass(frozen=True)
class Aggregates:
    site: MeterDetails
    battery: MeterDetails
    load: MeterDetails
    solar: MeterDetails

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Aggregates":
        return cls(
            site=MeterDetails.from_dict(_nested(data, "site")),
            battery=MeterDetails.from_dict(_nested(data, "battery")),
            load=MeterDetails.from_dict(_nested(data, "load")),
            solar=MeterDetails.from_dict(_nested(data, "solar")),
        )


@dataclass(frozen=True)
class SOE:
    percentage: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SOE":
        return cls(percentage=_float(data, "percentage"))


@dataclass(frozen=True)
class GridStatus:
    status: SystemStatus
    grid_services_active: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GridStatus":
        return cls(
            status=_enum(data, "grid_status", SystemStatus),
            grid_services_active=_bool(data, "grid_services_active"),
        )


@dataclass(frozen=True)
class Solar:
    brand: str
    model: str
    power_rating_watts: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Solar":
        return cls(
            brand=_str(data, "brand"),
            model=_str(data, "model"),
            power_rating_watts=_int(data, "power_rating_watts"),
        )


@dataclass(frozen=True)
class Installer:
    company: str
    customer_id: str
    phone: str
    email: str
    location: str
    mounting: str
    wiring: str
    backup_configuration: str
    solar_installation: str
    has_stack_kit: bool
    has_powerline_to_ethernet: bool
    run_sitemaster: bool
    verified_config: bool
    installation_types: List[str]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Installer":
        return cls(
            company=_str(data, "company"),
            customer_id=_str(data, "customer_id"),
            phone=_str(data, "phone"),
            email=_str(data, "email"),
            location=_str(data, "location"),
            mounting=_str(data, "mounting"),
            wiring=_str(data, "wiring"),
            backup_configuration=_str(data, "backup_configuration"),
            solar_installation=_str(data, "solar_installation"),
            has_stack_kit=_bool(data, "has_stack_kit"),
            has_powerline_to_ethernet=_bool(data, "has_powerline_to_ethernet"),
            run_sitemaster=_bool(data, "run_sitemaster"),
            verified_config=_bool(data, "verified_config"),
            installation_types=[str(t) for t in _list(data, "installation_types")],
        )


def _record(record_cls: Type[T]) -> Callable[[Any], T]:
    def decode(body: Any) -> T:
        return record_cls.from_dict(_object(body, "response"))
    return decode


def _records(record_cls: Type[T]) -> Callable[[Any], List[T]]:
    def decode(body: Any) -> List[T]:
        if not isinstance(body, list):
            raise DecodeError(f"response: expected a JSON array, got {type(body).__name__}")
        return [record_cls.from_dict(_object(item, "response item")) for item in body]
    return decode


# Endpoint path (relative to /api) -> body decoder
ENDPOINTS: Dict[str, Callable[[Any], Any]] = {
    "/login/Basic": _record(LoginResponse),
    "/networks": _records(Network),
    "/site_info": _record(SiteInfo),
    "/operation": _record(Operation),
    "/config": _record(Config),
    "/powerwalls": _record(Powerwalls),
    "/status": _record(Status),
    "/sitemaster": _record(SiteMaster),
    "/meters/aggregates": _record(Aggregates),
    "/system_status/soe": _record(SOE),
    "/system_status/grid_status": _record(GridStatus),
    "/solars": _records(Solar),
    "/installer": _record(Installer),
}


def decode_response(endpoint: str, body: Any) -> Any:
    """Decode a parsed JSON body from one of the gateway endpoints.

    Args:
        endpoint: Endpoint path relative to /api, e.g. "/status"
        body: Parsed JSON body

    Returns:
        The endpoint's typed record (a list of records for /networks and /solars)

    Raises:
        DecodeError: If any field is outside its codec's domain. The error's
            endpoint attribute names the endpoint.
    """
    try:
        decoder = ENDPOINTS[endpoint]
    except KeyError:
        raise DecodeError(f"no decoder registered for endpoint {endpoint!r}") from None
    try:
        return decoder(body)
    except DecodeError as e:
        e.endpoint = endpoint
        raise
