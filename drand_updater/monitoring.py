"""
Health-check and Prometheus exposition servers.
"""
import asyncio
import errno
import logging
import socket
import threading
import time
from socketserver import ThreadingMixIn
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from prometheus_client.exposition import make_wsgi_app

from drand_updater.metrics import Metrics

logger = logging.getLogger(__name__)

BIND_RETRIES = 5
BIND_RETRY_DELAY = 2


class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """A WSGI server that handles each request in its own thread."""
    allow_reuse_address = True
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")


def health_app(environ, start_response):
    """Liveness endpoint: GET /health -> 200 OK."""
    if environ.get('PATH_INFO') == '/health' and environ.get('REQUEST_METHOD') in ('GET', 'HEAD'):
        start_response('200 OK', [('Content-Type', 'text/plain'), ('Content-Length', '2')])
        return [b'OK']
    start_response('404 Not Found', [('Content-Type', 'text/plain'), ('Content-Length', '9')])
    return [b'Not Found']


class WSGIServerTask:
    """Runs a WSGI app on a background thread for as long as `run()` is awaited."""

    def __init__(self, name: str, app, host: str = "0.0.0.0", port: int = 0,
                 shutdown_timeout: float = 5.0):
        self.name = name
        self.app = app
        self.host = host
        self.port = port
        self.shutdown_timeout = shutdown_timeout
        self.server = None
        self.thread = None

    def start_server(self):
        """Binds and starts serving, retrying while the port is still held."""
        for attempt in range(BIND_RETRIES):
            try:
                self.server = make_server(self.host, self.port, self.app,
                                          ThreadingWSGIServer, handler_class=_QuietHandler)
                self.server.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                break
            except OSError as e:
                if e.errno != errno.EADDRINUSE or attempt == BIND_RETRIES - 1:
                    logger.error(f"Failed to bind {self.name} server to port {self.port}: {e}")
                    raise
                logger.warning(f"Port {self.port} in use, retrying in {BIND_RETRY_DELAY}s "
                               f"(attempt {attempt + 1}/{BIND_RETRIES})...")
                time.sleep(BIND_RETRY_DELAY)

        # Report the real port when 0 was requested
        self.port = self.server.server_address[1]
        self.thread = threading.Thread(target=self.server.serve_forever,
                                       name=f"{self.name}-server", daemon=True)
        self.thread.start()
        logger.info(f"{self.name} server started on http://{self.host}:{self.port}")

    def stop_server(self):
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.server = None
            logger.info(f"{self.name} server stopped.")

    async def run(self):
        """Serves until cancelled, then drains within shutdown_timeout."""
        await asyncio.to_thread(self.start_server)
        try:
            while self.thread.is_alive():
                await asyncio.sleep(0.5)
            raise RuntimeError(f"{self.name} server thread exited unexpectedly")
        finally:
            try:
                await asyncio.wait_for(asyncio.to_thread(self.stop_server), self.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{self.name} server did not drain within {self.shutdown_timeout}s")


def health_server(host: str, port: int, shutdown_timeout: float = 5.0) -> WSGIServerTask:
    return WSGIServerTask("health", health_app, host, port, shutdown_timeout)


def metrics_server(metrics: Metrics, host: str, port: int, shutdown_timeout: float = 5.0) -> WSGIServerTask:
    return WSGIServerTask("metrics", make_wsgi_app(metrics.registry), host, port, shutdown_timeout)
