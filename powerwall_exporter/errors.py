"""Exceptions raised while polling the Tesla Energy Gateway.

Every exception here derives from GatewayError and is fatal to the poll
cycle that raised it. The poll loop catches GatewayError, logs it and
answers the triggering scrape with a server error.
"""

from typing import Any, Optional


class GatewayError(Exception):
    """Base exception for a failed poll cycle."""
    pass


class DecodeError(GatewayError):
    """Exception raised when a gateway response cannot be decoded.

    Attributes:
        endpoint: API endpoint whose body failed to decode, once known
    """

    def __init__(self, message: str, endpoint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint

    def __str__(self) -> str:
        if self.endpoint:
            return f"decoding {self.endpoint}: {self.message}"
        return self.message


class UnknownEnumValue(DecodeError):
    """Exception raised when the gateway reports a token outside an enum's table."""

    def __init__(self, type_name: str, raw_value: Any):
        super().__init__(f"unknown {type_name} {raw_value!r}")
        self.type_name = type_name
        self.raw_value = raw_value


class UnreachableDevice(GatewayError):
    """Exception raised for transport, HTTP status and login failures."""
    pass


class MalformedVersion(GatewayError):
    """Exception raised when the firmware version is not MAJOR.MINOR.PATCH."""

    def __init__(self, raw: str):
        super().__init__(f"version {raw!r} unexpected, want A.B.C")
        self.raw = raw
