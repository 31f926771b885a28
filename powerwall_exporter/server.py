"""HTTP server for the /metrics endpoint."""

import logging
from socketserver import ThreadingMixIn
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

# Configure module logger
logger = logging.getLogger(__name__)


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True
    allow_reuse_address = True


class QuietHandler(WSGIRequestHandler):
    """Request handler that leaves access logging to the application."""

    def log_message(self, format: str, *args: Any) -> None:
        return


def create_server(app, port: int, host: str = "") -> WSGIServer:
    """Create a threaded WSGI server for the given application.

    Args:
        app: WSGI application, normally PollEngine.wsgi_app
        port: TCP port to listen on
        host: Address to bind, all interfaces by default

    Returns:
        A bound server; call serve_forever() to start handling requests
    """
    server = make_server(host, port, app, server_class=ThreadingWSGIServer, handler_class=QuietHandler)
    logger.info(f"Serving metrics on port {port} at /metrics")
    return server
