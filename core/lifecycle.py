"""
Process lifecycle: serving thread, termination signals, bounded drain.
"""
import signal
import ssl
import threading
import time
import logging
from typing import Optional

from werkzeug.serving import ThreadedWSGIServer, WSGIRequestHandler
from werkzeug.wsgi import ClosingIterator

from config import HANDSHAKE_TIMEOUT, SHUTDOWN_TIMEOUT
from .modes import ModeBundle

logger = logging.getLogger(__name__)


class QuietRequestHandler(WSGIRequestHandler):
    """Request handler without werkzeug's per-request log line."""

    def log_request(self, code='-', size='-'):
        # The dispatcher writes the access line
        pass


class GatewayServer(ThreadedWSGIServer):
    """
    Threaded WSGI server that handshakes TLS on the connection's thread.

    The listening socket stays plain; each accepted connection is wrapped
    in its request thread, so a slow or silent peer never holds up accept.
    """

    def __init__(self, host: str, port: int, app,
                 tls_context: Optional[ssl.SSLContext] = None,
                 handshake_timeout: float = HANDSHAKE_TIMEOUT,
                 fd: Optional[int] = None):
        super().__init__(host, port, app, handler=QuietRequestHandler, fd=fd)
        self.tls_context = tls_context
        self.handshake_timeout = handshake_timeout
        # Marks the environ scheme as https
        self.ssl_context = tls_context

    def finish_request(self, request, client_address):
        if self.tls_context is None:
            super().finish_request(request, client_address)
            return

        request.settimeout(self.handshake_timeout)
        try:
            conn = self.tls_context.wrap_socket(request, server_side=True)
        except OSError as e:
            logger.debug("TLS handshake with %s:%s failed: %s",
                         client_address[0], client_address[1], e)
            return
        conn.settimeout(None)

        try:
            super().finish_request(conn, client_address)
        finally:
            self.shutdown_request(conn)


class InFlightTracker:
    """
    WSGI middleware counting requests whose response is not yet closed.
    """

    def __init__(self, app):
        self.app = app
        self._count = 0
        self._cond = threading.Condition()

    @property
    def active(self) -> int:
        with self._cond:
            return self._count

    def __call__(self, environ, start_response):
        with self._cond:
            self._count += 1
        try:
            app_iter = self.app(environ, start_response)
        except BaseException:
            self._release()
            raise
        return ClosingIterator(app_iter, self._release)

    def _release(self):
        with self._cond:
            self._count -= 1
            self._cond.notify_all()

    def wait_idle(self, timeout: float) -> bool:
        """True if all requests finished within timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=max(timeout, 0))


class LifecycleController:
    """
    Owns the listener for the process lifetime.

    serve() blocks until SIGINT/SIGTERM (or stop()), then drains
    in-flight requests for at most shutdown_timeout seconds.
    """

    def __init__(self, bundle: ModeBundle, app, shutdown_timeout: float = SHUTDOWN_TIMEOUT):
        self.bundle = bundle
        self.tracker = InFlightTracker(app)
        self.shutdown_timeout = shutdown_timeout
        self.server: Optional[GatewayServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self.server_failed = False
        self._stop = threading.Event()

    def make_server(self) -> GatewayServer:
        cfg = self.bundle.config
        self.server = GatewayServer(
            cfg.host, cfg.port, self.tracker,
            tls_context=self.bundle.ssl_context,
            fd=self.bundle.listener.fileno(),
        )
        return self.server

    def install_signal_handlers(self):
        """Must be called from the main thread."""
        signal.signal(signal.SIGINT, self._on_signal)
        signal.signal(signal.SIGTERM, self._on_signal)

    def _on_signal(self, signum, frame):
        logger.info("shutting down (%s)...", signal.Signals(signum).name)
        self._stop.set()

    def stop(self):
        self._stop.set()

    def start(self):
        if self.server is None:
            self.make_server()
        self.server_thread = threading.Thread(
            target=self.server.serve_forever, name='http-server', daemon=True)
        self.server_thread.start()

    def serve(self) -> bool:
        """
        Serve until stopped.

        Sets server_failed if the accept loop ends on its own.

        Returns:
            True if the drain completed within the shutdown timeout
        """
        self.start()
        while not self._stop.wait(0.5):
            if not self.server_thread.is_alive():
                self.server_failed = True
                logger.error("serve failed: HTTP server thread exited unexpectedly")
                break
        return self.shutdown()

    def shutdown(self) -> bool:
        """
        Stop accepting, wait for in-flight requests, release resources.

        Bounded by shutdown_timeout; requests still running afterwards
        are abandoned.
        """
        deadline = time.monotonic() + self.shutdown_timeout

        if self.server_thread is not None and self.server_thread.is_alive():
            stopper = threading.Thread(target=self.server.shutdown, name='http-shutdown', daemon=True)
            stopper.start()
            stopper.join(max(deadline - time.monotonic(), 0))

        drained = self.tracker.wait_idle(deadline - time.monotonic())
        if not drained:
            logger.warning("shutting down with %d request(s) still in flight", self.tracker.active)

        if self.server is not None:
            self.server.server_close()
        self.bundle.close()
        logger.info("shutting down: done")
        return drained
