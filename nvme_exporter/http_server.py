from __future__ import annotations

from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
import logging
import threading
import time

from prometheus_client import CONTENT_TYPE_LATEST

from nvme_exporter import APP_NAME
from nvme_exporter.config import parse_listen_addr
from nvme_exporter.sink import MetricsSink

LANDING_PAGE = """<html>
<head><title>{name}</title></head>
<body>
<h1>{name}</h1>
<p>Visit <a href="/metrics">/metrics</a> to see metrics about the exporter.</p>
</body>
</html>
"""

logger = logging.getLogger("MetricsHTTPServer")


class MetricsRequestHandler(BaseHTTPRequestHandler):
    server: _ExporterHTTPServer
    # Idle or slow clients are dropped after a second without data
    timeout = 1

    def do_GET(self) -> None:
        path = self.path.split("?", 1)[0]
        if path == "/metrics":
            self._respond(200, CONTENT_TYPE_LATEST, self.server.sink.export())
        elif path == "/":
            body = LANDING_PAGE.format(name=APP_NAME).encode("utf-8")
            self._respond(200, "text/html; charset=utf-8", body)
        elif path == "/healthz":
            self._respond(200, "text/plain; charset=utf-8", b"ok\n")
        else:
            self._respond(404, "text/plain; charset=utf-8", b"Not Found\n")

    def _respond(self, status: int, content_type: str, body: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)


class _ExporterHTTPServer(ThreadingHTTPServer):
    # Request threads are daemons, tracked here and joined by drain()
    daemon_threads = True

    def __init__(self, address: tuple[str, int], sink: MetricsSink) -> None:
        self.sink = sink
        self._request_threads: set[threading.Thread] = set()
        self._request_lock = threading.Lock()
        super().__init__(address, MetricsRequestHandler)

    def process_request(self, request, client_address) -> None:
        thread = threading.Thread(
            target=self._handle_request,
            args=(request, client_address),
            name="http-request",
            daemon=True,
        )
        with self._request_lock:
            self._request_threads.add(thread)
        thread.start()

    def _handle_request(self, request, client_address) -> None:
        try:
            self.process_request_thread(request, client_address)
        finally:
            with self._request_lock:
                self._request_threads.discard(threading.current_thread())

    def active_requests(self) -> int:
        with self._request_lock:
            return len(self._request_threads)

    def drain(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for in-flight requests to finish."""
        deadline = time.monotonic() + timeout
        with self._request_lock:
            threads = list(self._request_threads)
        for thread in threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        return not any(thread.is_alive() for thread in threads)


class MetricsHTTPServer:
    def __init__(self, listen: str, sink: MetricsSink, shutdown_timeout: float = 5.0) -> None:
        self.listen = listen
        self.sink = sink
        self.shutdown_timeout = shutdown_timeout
        self._srv: _ExporterHTTPServer | None = None
        self._ready = threading.Event()
        self._serving = False
        self._closed = False
        self._state_lock = threading.Lock()

    def get_addr(self) -> str:
        return self.listen

    @property
    def server_address(self) -> tuple[str, int]:
        """The bound address, which differs from ``listen`` for port 0."""
        if self._srv is None:
            raise RuntimeError("server is not running")
        host, port = self._srv.server_address[:2]
        return host, port

    def bind(self) -> None:
        if self._srv is None:
            self._srv = _ExporterHTTPServer(parse_listen_addr(self.listen), self.sink)
            self._ready.set()

    def run(self) -> None:
        """Bind (if needed) and serve until :meth:`shutdown` is called."""
        self.bind()
        srv = self._srv
        if srv is None:
            raise RuntimeError("server failed to bind")
        with self._state_lock:
            if self._closed:
                return
            self._serving = True
        try:
            srv.serve_forever()
        finally:
            self._serving = False

    def wait_ready(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    def active_requests(self) -> int:
        return self._srv.active_requests() if self._srv is not None else 0

    def shutdown(self) -> bool:
        """Stop serving and drain in-flight requests.

        Returns within ``shutdown_timeout`` seconds. Returns False when
        requests were still running by then; their daemon threads are
        abandoned.
        """
        if self._srv is None:
            return True
        srv = self._srv
        with self._state_lock:
            self._closed = True
            serving = self._serving

        deadline = time.monotonic() + self.shutdown_timeout
        stopped = True
        if serving:
            stopper = threading.Thread(target=srv.shutdown, name="http-shutdown", daemon=True)
            stopper.start()
            stopper.join(self.shutdown_timeout)
            stopped = not stopper.is_alive()
        drained = srv.drain(max(0.0, deadline - time.monotonic()))
        if not drained:
            logger.warning("Abandoning %d in-flight request(s).", srv.active_requests())
        srv.server_close()
        return stopped and drained
