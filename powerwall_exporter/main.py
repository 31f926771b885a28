"""Main entry point for the Powerwall exporter.

This module handles:
- Loading configuration from environment variables
- Logging in to the gateway and fetching the fixed site attributes
- Scheduling periodic polls with APScheduler
- Serving /metrics, which polls the gateway on every scrape
"""

import logging
import os
import sys
from typing import Any, Dict

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

from powerwall_exporter.client import PowerwallClient
from powerwall_exporter.errors import GatewayError
from powerwall_exporter.exporter import PowerwallExporter
from powerwall_exporter.model import fetch_fixed_info
from powerwall_exporter.poller import PollEngine
from powerwall_exporter.server import create_server

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, Any] = {
    "gateway": "",
    "username": "",
    "password": "",
    "namespace": "tesla",
    "subsystem": "energy_gateway",
    "exporter_port": 5678,
    "poll_interval": 10.0,
    "timeout": 5.0,
    "log_level": "INFO",
}

# Configuration from environment
config: Dict[str, Any] = dict(DEFAULTS)


def _env_number(name: str, key: str, cast) -> None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        config[key] = DEFAULTS[key]
        return
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {name}, using default: {DEFAULTS[key]}")
        value = DEFAULTS[key]
    else:
        if value <= 0:
            logger.warning(f"{name} must be positive, using default: {DEFAULTS[key]}")
            value = DEFAULTS[key]
    config[key] = value


def load_config() -> bool:
    """Load configuration from environment variables.

    Required:
        POWERWALL_GATEWAY: Hostname or IP address of the Tesla Energy Gateway
        POWERWALL_USERNAME: Customer login email
        POWERWALL_PASSWORD: Customer password

    Optional:
        PROMETHEUS_NAMESPACE: Metric namespace (default: tesla)
        PROMETHEUS_SUBSYSTEM: Metric subsystem (default: energy_gateway)
        EXPORTER_PORT: Port to serve /metrics on (default: 5678)
        POLL_INTERVAL: Seconds between scheduled polls (default: 10)
        POWERWALL_TIMEOUT: Per-request timeout in seconds (default: 5)
        LOG_LEVEL: Logging level name (default: INFO)

    Returns:
        True if all required config loaded, False otherwise
    """
    config["gateway"] = os.getenv("POWERWALL_GATEWAY", "")
    config["username"] = os.getenv("POWERWALL_USERNAME", "")
    config["password"] = os.getenv("POWERWALL_PASSWORD", "")
    config["namespace"] = os.getenv("PROMETHEUS_NAMESPACE", DEFAULTS["namespace"])
    config["subsystem"] = os.getenv("PROMETHEUS_SUBSYSTEM", DEFAULTS["subsystem"])
    config["log_level"] = os.getenv("LOG_LEVEL", DEFAULTS["log_level"]).upper()
    if not isinstance(logging.getLevelName(config["log_level"]), int):
        logger.warning(f"Invalid LOG_LEVEL, using default: {DEFAULTS['log_level']}")
        config["log_level"] = DEFAULTS["log_level"]

    # Optional with defaults
    _env_number("EXPORTER_PORT", "exporter_port", int)
    _env_number("POLL_INTERVAL", "poll_interval", float)
    _env_number("POWERWALL_TIMEOUT", "timeout", float)

    # Validate required config
    missing = []
    if not config["gateway"]:
        missing.append("POWERWALL_GATEWAY")
    if not config["username"]:
        missing.append("POWERWALL_USERNAME")
    if not config["password"]:
        missing.append("POWERWALL_PASSWORD")

    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        return False

    logger.info(f"Configuration loaded: gateway={config['gateway']}, "
                f"port={config['exporter_port']}, "
                f"poll_interval={config['poll_interval']}s")
    return True


def build_engine() -> PollEngine:
    """Log in to the gateway, fetch the fixed site info and wire up the poll engine.

    Raises:
        GatewayError: If login or fetching the fixed info fails
    """
    client = PowerwallClient(
        gateway=config["gateway"],
        username=config["username"],
        password=config["password"],
        timeout=config["timeout"],
    )
    client.login()
    fixed = fetch_fixed_info(client)
    exporter = PowerwallExporter(
        fixed,
        namespace=config["namespace"],
        subsystem=config["subsystem"],
    )
    return PollEngine(client, fixed, exporter)


def main() -> int:
    """Main entry point.

    1. Load .env file with python-dotenv
    2. Load and validate configuration
    3. Log in and fetch the fixed site info
    4. Run the first poll; refuse to start if it fails
    5. Start the interval scheduler
    6. Serve /metrics (blocks)

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    # Load .env file
    load_dotenv()

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logger.info("Powerwall exporter starting")

    if not load_config():
        logger.error("Configuration failed, exiting")
        return 1

    logging.getLogger().setLevel(config["log_level"])

    try:
        engine = build_engine()
        # Don't bring up the web interface until the metrics are populated
        engine.poll()
    except GatewayError as e:
        logger.error(f"Initial poll failed, exiting: {e}")
        return 1

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        engine.scheduled_poll,
        trigger=IntervalTrigger(seconds=config["poll_interval"]),
        id="gateway_poll",
        name=f"Poll gateway every {config['poll_interval']}s",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Scheduled gateway poll every {config['poll_interval']}s")

    server = create_server(engine.wsgi_app, config["exporter_port"])
    logger.info(f"Prometheus metrics available at http://localhost:{config['exporter_port']}/metrics")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
    finally:
        scheduler.shutdown(wait=False)
        server.server_close()
        engine.client.close()

    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    sys.exit(main())
