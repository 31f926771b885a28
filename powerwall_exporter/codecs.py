"""Scalar codecs for values reported by the Tesla Energy Gateway.

This module handles:
- Enumerated string tokens (network interface, operating mode, grid status, grid state)
- IANA timezone names
- Timestamps in the layouts the gateway is known to emit
- The two duration encodings: float seconds and "143h54m32.539257895s" strings

Each parse_* function accepts the raw JSON scalar and raises DecodeError when
the value is outside the codec's domain. The matching format_* functions are
for logs and diagnostics and are not guaranteed to round-trip.
"""

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from powerwall_exporter.errors import DecodeError, UnknownEnumValue

# Configure module logger
logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


class GatewayEnum(Enum):
    """Enumeration whose members display as their value."""

    def __str__(self) -> str:
        return self.value


class NetworkInterface(GatewayEnum):
    ETHERNET = "ethernet"
    CELLULAR = "cellular"
    WIFI = "wifi"


class OperatingMode(GatewayEnum):
    BACKUP = "Backup"
    SELF_CONSUMPTION = "Self Consumption"
    AUTONOMOUS = "Autonomous"
    SCHEDULER = "Scheduler"
    SITE_CONTROL = "SiteControl"


class SystemStatus(GatewayEnum):
    GRID_CONNECTED = "GridConnected"
    ISLANDED_READY = "IslandedReady"
    ISLANDED_ACTIVE = "IslandedActive"
    TRANSITION_TO_GRID = "TransitionToGrid"


class GridState(GatewayEnum):
    COMPLIANT = "Compliant"
    QUALIFYING = "Qualifying"
    UNCOMPLIANT = "Uncompliant"


# Device token -> member, per enumeration. Lookups are case-sensitive.
_ENUM_TOKENS: Dict[Type[Enum], Dict[str, Enum]] = {
    NetworkInterface: {
        "EthType": NetworkInterface.ETHERNET,
        "GsmType": NetworkInterface.CELLULAR,
        "WifiType": NetworkInterface.WIFI,
    },
    OperatingMode: {
        "backup": OperatingMode.BACKUP,
        "self_consumption": OperatingMode.SELF_CONSUMPTION,
        "autonomous": OperatingMode.AUTONOMOUS,
        "scheduler": OperatingMode.SCHEDULER,
        "site_control": OperatingMode.SITE_CONTROL,
    },
    SystemStatus: {
        "SystemGridConnected": SystemStatus.GRID_CONNECTED,
        "SystemIslandedReady": SystemStatus.ISLANDED_READY,
        "SystemIslandedActive": SystemStatus.ISLANDED_ACTIVE,
        "SystemTransitionToGrid": SystemStatus.TRANSITION_TO_GRID,
    },
    GridState: {
        "Grid_Compliant": GridState.COMPLIANT,
        "Grid_Qualifying": GridState.QUALIFYING,
        "Grid_Uncompliant": GridState.UNCOMPLIANT,
    },
}

# Go-style zero time, used for empty timestamps
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_FRACTIONAL_SECONDS = re.compile(r"^(.*)\.\d+(.*)$")

# Tried in order, first match wins. Each layout is checked against its exact
# shape first, since strptime accepts unpadded fields and either offset form.
_TIMESTAMP_LAYOUTS = (
    # 2019-07-01T10:00:00-07:00
    (re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{2}:\d{2}$", re.ASCII), "%Y-%m-%dT%H:%M:%S%z"),
    # 2019-07-01 10:00:00 -0700
    (re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} [+-]\d{4}$", re.ASCII), "%Y-%m-%d %H:%M:%S %z"),
    # 2019-07-01T17:00:00Z
    (re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$", re.ASCII), "%Y-%m-%dT%H:%M:%SZ"),
)

# "143h54m32.539257895s". Any single character separates seconds from nanoseconds.
_STRUCTURED_DURATION = re.compile(
    r"((?P<hours>\d+?)h)?((?P<minutes>\d+?)m)?((?P<seconds>\d+?).)((?P<nanoseconds>\d+?)s)"
)


def token_table(enum_cls: Type[E]) -> Dict[str, E]:
    """Return a copy of the device token table for an enumeration."""
    return dict(_ENUM_TOKENS[enum_cls])


def decode_enum(enum_cls: Type[E], raw: Any) -> E:
    """Map a device token onto an enumeration member.

    Args:
        enum_cls: One of NetworkInterface, OperatingMode, SystemStatus, GridState
        raw: Raw JSON value from the response body

    Returns:
        The mapped enumeration member

    Raises:
        DecodeError: If raw is not a string
        UnknownEnumValue: If raw is not in the enumeration's token table
    """
    if not isinstance(raw, str):
        raise DecodeError(f"{enum_cls.__name__}: expected a string, got {raw!r}")
    try:
        return _ENUM_TOKENS[enum_cls][raw]
    except KeyError:
        raise UnknownEnumValue(enum_cls.__name__, raw) from None


def encode_enum(value: Enum) -> str:
    """Return the device token for an enumeration member."""
    for token, member in _ENUM_TOKENS[type(value)].items():
        if member is value:
            return token
    raise KeyError(value)


def parse_timezone(raw: Any) -> Optional[ZoneInfo]:
    """Resolve an IANA timezone name.

    Hosts without a timezone database cannot resolve any name, so an
    unresolvable name is logged and decoded as None rather than failing
    the whole response.

    Args:
        raw: Timezone name, e.g. "America/Los_Angeles"

    Returns:
        ZoneInfo for the name, or None if it cannot be resolved
    """
    if not isinstance(raw, str):
        raise DecodeError(f"timezone: expected a string, got {raw!r}")
    try:
        return ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        logger.warning(f"The gateway reports timezone {raw!r}, but it cannot be resolved: {e}")
        return None


def format_timezone(tz: Optional[ZoneInfo]) -> str:
    if tz is None:
        return "nil"
    return tz.key


def parse_timestamp(raw: Any) -> datetime:
    """Parse a gateway timestamp into a timezone-aware datetime.

    Fractional seconds are stripped before parsing. An empty string
    decodes to ZERO_TIME.

    Args:
        raw: Timestamp string

    Returns:
        Timezone-aware datetime

    Raises:
        DecodeError: If no known layout matches

    Example:
        >>> parse_timestamp("2019-07-01T10:00:00.123456789-07:00")
        datetime.datetime(2019, 7, 1, 10, 0, tzinfo=datetime.timezone(datetime.timedelta(days=-1, seconds=61200)))
    """
    if not isinstance(raw, str):
        raise DecodeError(f"timestamp: expected a string, got {raw!r}")
    if raw == "":
        return ZERO_TIME

    value = raw
    match = _FRACTIONAL_SECONDS.match(value)
    if match:
        value = match.group(1) + match.group(2)

    for shape, layout in _TIMESTAMP_LAYOUTS:
        if not shape.fullmatch(value):
            continue
        try:
            parsed = datetime.strptime(value, layout)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    raise DecodeError(f"no layout matched timestamp {raw!r}")


def format_timestamp(value: datetime) -> str:
    if value == ZERO_TIME:
        return ""
    return value.isoformat()


def parse_float_seconds(raw: Any) -> timedelta:
    """Parse a JSON number of seconds, truncating toward zero.

    The fractional part is discarded: 12345.999 decodes to 12345 seconds.
    """
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise DecodeError(f"duration: expected a number of seconds, got {raw!r}")
    try:
        return timedelta(seconds=math.trunc(raw))
    except (ValueError, OverflowError) as e:
        raise DecodeError(f"duration: {raw!r} out of range: {e}") from e


def format_float_seconds(value: timedelta) -> float:
    return value.total_seconds()


def parse_structured_duration(raw: Any) -> timedelta:
    """Parse an uptime string such as "143h54m32.539257895s".

    The hours and minutes groups are optional. The seconds group is followed
    by any single character and then the nanoseconds group. Every captured
    group is read as an integer, so "5.5s" is five seconds and five
    nanoseconds.

    Args:
        raw: Duration string

    Returns:
        Combined duration (timedelta rounds nanoseconds to microseconds)

    Raises:
        DecodeError: If the string has no seconds/nanoseconds group or is out of range
    """
    if not isinstance(raw, str):
        raise DecodeError(f"duration: expected a string, got {raw!r}")
    match = _STRUCTURED_DURATION.search(raw)
    if match is None:
        raise DecodeError(f"duration {raw!r} does not match [<h>h][<m>m]<s>.<ns>s")

    parts = {
        name: int(value)
        for name, value in match.groupdict().items()
        if value is not None
    }
    try:
        return timedelta(
            hours=parts.get("hours", 0),
            minutes=parts.get("minutes", 0),
            seconds=parts.get("seconds", 0),
            microseconds=parts.get("nanoseconds", 0) / 1000,
        )
    except (OverflowError, ValueError) as e:
        raise DecodeError(f"duration {raw!r} out of range: {e}") from e


def format_structured_duration(value: timedelta) -> str:
    total_us = (value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds
    seconds, micros = divmod(total_us, 1_000_000)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    return f"{hours}h{minutes}m{seconds}.{micros * 1000:09d}s"
