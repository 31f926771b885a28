"""Tesla Powerwall Prometheus exporter package.

Polls the local API of a Tesla Energy Gateway, reshapes the readings into a
stable metrics schema and serves them at /metrics for Prometheus to scrape.
"""

__version__ = "0.1.0"
