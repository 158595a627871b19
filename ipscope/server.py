"""HTTP listener exposing /metrics and /healthz."""

import logging
import threading
from wsgiref.simple_server import WSGIRequestHandler, make_server

from prometheus_client import CollectorRegistry, make_wsgi_app
from prometheus_client.exposition import ThreadingWSGIServer

logger = logging.getLogger(__name__)

METRICS_PATH = "/metrics"
HEALTH_PATH = "/healthz"


class _LoggingHandler(WSGIRequestHandler):
    """Route per-request access logs through ``logging`` at debug level."""

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        logger.debug("%s - %s", self.address_string(), format % args)


def make_app(registry: CollectorRegistry):
    """Build the WSGI application serving metrics and the health check."""
    metrics_app = make_wsgi_app(registry)

    def app(environ, start_response):
        path = environ.get("PATH_INFO", "")
        if path == METRICS_PATH:
            return metrics_app(environ, start_response)
        if path == HEALTH_PATH:
            start_response("200 OK", [("Content-Type", "text/plain; charset=utf-8")])
            return [b"ok"]
        start_response("404 Not Found", [("Content-Type", "text/plain; charset=utf-8")])
        return [b"not found"]

    return app


class MetricsServer:
    """Threaded HTTP server running in a background daemon thread.

    Args:
        host: Bind address.
        port: TCP port; ``0`` picks a free port (see ``port``).
        registry: Registry exposed at ``/metrics``.
    """

    def __init__(self, host: str, port: int, registry: CollectorRegistry) -> None:
        self._host = host
        self._port = port
        self._registry = registry
        self._httpd: ThreadingWSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        if self._httpd is not None:
            return self._httpd.server_port
        return self._port

    def start(self) -> None:
        """Bind the socket and start serving.

        Raises:
            OSError: If the address cannot be bound.
        """
        self._httpd = make_server(
            self._host,
            self._port,
            make_app(self._registry),
            ThreadingWSGIServer,
            handler_class=_LoggingHandler,
        )
        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            name="ipscope-http",
            daemon=True,
        )
        self._thread.start()
        logger.info("Serving metrics on %s:%d", self._host, self.port)

    def stop(self) -> None:
        """Stop serving and release the socket."""
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join()
        logger.info("Metrics server stopped")
        self._httpd = None
        self._thread = None


def serve(
    host: str,
    port: int,
    registry: CollectorRegistry,
    stop: threading.Event,
) -> None:
    """Serve *registry* until *stop* is set."""
    server = MetricsServer(host, port, registry)
    server.start()
    try:
        # Short waits keep the main thread responsive to signal handlers.
        while not stop.wait(0.5):
            pass
    finally:
        server.stop()
