import logging
import signal
import socket
import ssl
import sys
import threading

from werkzeug.serving import ThreadedWSGIServer

import mutate

LOG = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 5


class TrackingWSGIServer(ThreadedWSGIServer):
    """A threaded WSGI server that remembers its open connections so that
    shutdown can wait for them and close what is left.

    werkzeug closes every connection after one response, so an open
    connection is a request that is being received, handled or answered.
    """

    def __init__(self, *args, **kwargs):
        self._connections = set()
        self._cond = threading.Condition()
        super().__init__(*args, **kwargs)

        if self.ssl_context is not None:
            # Handshake in the connection's thread, not in the accept loop.
            self.socket.do_handshake_on_connect = False

    @property
    def active(self):
        with self._cond:
            return len(self._connections)

    def finish_request(self, request, client_address):
        if isinstance(request, ssl.SSLSocket):
            try:
                request.do_handshake()
            except OSError as err:
                LOG.warning("TLS handshake with %s failed: %s", client_address, err)
                return
        super().finish_request(request, client_address)

    def process_request(self, request, client_address):
        with self._cond:
            self._connections.add(request)
        super().process_request(request, client_address)

    def shutdown_request(self, request):
        try:
            super().shutdown_request(request)
        finally:
            with self._cond:
                self._connections.discard(request)
                self._cond.notify_all()

    def wait_idle(self, timeout):
        """Wait up to `timeout` seconds for all connections to finish. Returns
        False if some are still open."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._connections, timeout)

    def close_connections(self):
        with self._cond:
            connections = list(self._connections)

        for conn in connections:
            try:
                conn.shutdown(socket.SHUT_RDWR)
            except OSError as err:
                # The peer may already be gone.
                LOG.debug("error closing connection: %s", err)

        return len(connections)


class WebhookServer:
    """Serve a WSGI application over TLS until told to stop.

    When the stop event is set the server stops accepting connections at once,
    gives requests in progress `grace_period` seconds to complete, and then
    closes whatever connections remain.
    """

    def __init__(
        self,
        app,
        port: int,
        ssl_context=None,
        host: str = "0.0.0.0",
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ):
        self.app = app
        self.host = host
        self.port = port
        self.ssl_context = ssl_context
        self.grace_period = grace_period
        self._httpd = None

    def bind(self):
        """Bind the listening socket. Failures here are fatal: werkzeug exits
        the process if the address cannot be bound, and an OSError is raised
        if the TLS certificate or key cannot be loaded."""
        self._httpd = TrackingWSGIServer(
            self.host, self.port, self.app, ssl_context=self.ssl_context
        )
        self.port = self._httpd.port
        return self

    def run(self, stop: threading.Event):
        """Serve requests. Does not return until `stop` is set, or the server
        fails."""
        if self._httpd is None:
            self.bind()

        watcher = threading.Thread(
            target=self._watch, args=(stop,), name="webhook-shutdown"
        )
        watcher.start()

        LOG.info(
            "Endpoints hijacker is listening on %s:%d, patching Osiris-enabled services",
            self.host,
            self.port,
        )
        try:
            self._httpd.serve_forever()
        except Exception:
            LOG.exception("Endpoints hijacker error")
            raise
        finally:
            # Also releases the watcher when the server failed on its own.
            stop.set()
            watcher.join()

    def _watch(self, stop):
        stop.wait()
        self.shutdown()

    def shutdown(self):
        LOG.info("Endpoints hijacker is shutting down")

        # Stops the accept loop; serve_forever closes the listening socket
        # on its way out.
        self._httpd.shutdown()

        if not self._httpd.wait_idle(self.grace_period):
            LOG.warning(
                "%d connection(s) still open after %ss, closing them",
                self._httpd.active,
                self.grace_period,
            )
        closed = self._httpd.close_connections()
        LOG.debug("closed %d connection(s)", closed)


def main():
    app = mutate.create_app()
    logging.getLogger().setLevel(app.config["LOG_LEVEL"])

    server = WebhookServer(
        app,
        port=app.config["SECURE_PORT"],
        ssl_context=(app.config["TLS_CERT_FILE"], app.config["TLS_KEY_FILE"]),
        grace_period=app.config["SHUTDOWN_GRACE_PERIOD"],
    )

    try:
        server.bind()
    except OSError as err:
        LOG.error("unable to start webhook server: %s", err)
        sys.exit(1)

    stop = threading.Event()

    def handle_signal(signum, frame):
        LOG.info("received signal %s", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    server.run(stop)


if __name__ == "__main__":
    main()
