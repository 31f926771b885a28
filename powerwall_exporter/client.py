"""Tesla Energy Gateway API client module.

This module handles:
- Logging in to the gateway's local API with the customer credentials
- Session cookie handling for subsequent requests
- Fetching each API endpoint and decoding it into typed records
"""

import logging
from typing import Any, List, Optional

import requests
import urllib3

from powerwall_exporter.errors import DecodeError, UnreachableDevice
from powerwall_exporter.responses import (
    SOE,
    Aggregates,
    Config,
    GridStatus,
    Installer,
    LoginResponse,
    Network,
    Operation,
    Powerwalls,
    SiteInfo,
    SiteMaster,
    Solar,
    Status,
    decode_response,
)

# Configure module logger
logger = logging.getLogger(__name__)

# The gateway serves a self-signed certificate; every request skips verification.
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


class PowerwallClient:
    """Client for the Tesla Energy Gateway's local API.

    The gateway authenticates with a session cookie issued by /api/login/Basic.
    Requests carry a short timeout so a hung gateway cannot wedge a poll, and
    are never retried: a failed request fails the poll that made it.

    Attributes:
        gateway: Hostname or IP address of the gateway
        username: Customer login email
        timeout: Per-request timeout in seconds
    """

    CUSTOMER_USERNAME = "customer"
    DEFAULT_TIMEOUT = 5.0

    def __init__(
        self,
        gateway: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        """Initialize the client.

        Args:
            gateway: Hostname or IP address of the gateway
            username: Customer login email
            password: Customer password
            timeout: Per-request timeout in seconds
            session: Optional session for testing. If None, a new one is created.
        """
        self.gateway = gateway
        self.username = username
        self.password = password
        self.timeout = timeout
        self.base_url = f"https://{gateway}/api"
        self.session = session if session is not None else requests.Session()
        self.session.verify = False

    def _request(self, method: str, endpoint: str, payload: Optional[dict] = None) -> Any:
        """Issue a request and decode the response body.

        Args:
            method: HTTP method (GET, POST)
            endpoint: Endpoint path relative to /api
            payload: Optional JSON request body

        Returns:
            The endpoint's decoded record

        Raises:
            UnreachableDevice: On transport errors or a non-200 status
            DecodeError: If the body is not valid JSON or does not decode
        """
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except (requests.RequestException, urllib3.exceptions.HTTPError) as e:
            raise UnreachableDevice(f"{method} {endpoint}: {e}") from e

        if response.status_code != 200:
            raise UnreachableDevice(f"{method} {endpoint}: got status code {response.status_code}, want 200")

        try:
            body = response.json()
        except ValueError as e:
            raise DecodeError(f"invalid JSON: {e}\nResponse:\n{response.text}", endpoint=endpoint) from e

        return decode_response(endpoint, body)

    def login(self) -> LoginResponse:
        """Authenticate with the gateway.

        Returns:
            The decoded login response

        Raises:
            UnreachableDevice: If the gateway rejects the credentials or cannot be reached
        """
        logger.info(f"Logging in to gateway {self.gateway} as {self.username}")
        payload = {
            "username": self.CUSTOMER_USERNAME,
            "email": self.username,
            "password": self.password,
            "force_sm_off": False,
        }
        resp = self._request("POST", "/login/Basic", payload)
        logger.info("Authentication successful")
        return resp

    def get_networks(self) -> List[Network]:
        return self._request("GET", "/networks")

    def get_site_info(self) -> SiteInfo:
        return self._request("GET", "/site_info")

    def get_operation(self) -> Operation:
        return self._request("GET", "/operation")

    def get_config(self) -> Config:
        return self._request("GET", "/config")

    def get_powerwalls(self) -> Powerwalls:
        return self._request("GET", "/powerwalls")

    def get_status(self) -> Status:
        return self._request("GET", "/status")

    def get_site_master(self) -> SiteMaster:
        return self._request("GET", "/sitemaster")

    def get_aggregates(self) -> Aggregates:
        return self._request("GET", "/meters/aggregates")

    def get_soe(self) -> SOE:
        return self._request("GET", "/system_status/soe")

    def get_grid_status(self) -> GridStatus:
        return self._request("GET", "/system_status/grid_status")

    def get_solars(self) -> List[Solar]:
        return self._request("GET", "/solars")

    def get_installer(self) -> Installer:
        return self._request("GET", "/installer")

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()
