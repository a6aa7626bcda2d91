import logging
import socket
import threading

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from server_keeper.state import Metrics

PROBE_TIMEOUT_SECONDS = 3.0
_STOP_POLL_SECONDS = 0.5


def probe(addr: tuple[str, int], timeout: float = PROBE_TIMEOUT_SECONDS) -> str | None:
    try:
        with socket.create_connection(addr, timeout=timeout):
            return None
    except OSError as exc:
        return str(exc) or exc.__class__.__name__


def create_app(
    metrics: Metrics,
    server_addr: tuple[str, int],
    probe_timeout: float = PROBE_TIMEOUT_SECONDS,
) -> FastAPI:
    app = FastAPI()

    @app.get("/status", response_class=PlainTextResponse)
    def status() -> PlainTextResponse:
        err = probe(server_addr, probe_timeout)
        if err is not None:
            return PlainTextResponse(
                f"{server_addr[0]}:{server_addr[1]} unreachable: {err}", status_code=500
            )
        return PlainTextResponse("healthy")

    @app.get("/metrics")
    def metrics_endpoint() -> Response:
        return Response(
            content=generate_latest(metrics.registry), media_type=CONTENT_TYPE_LATEST
        )

    @app.get("/lastbackup", response_class=PlainTextResponse)
    def last_backup() -> PlainTextResponse:
        last = metrics.last_backup
        return PlainTextResponse(last.isoformat() if last else "")

    return app


def bind_socket(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


class MetricsServer:
    def __init__(
        self,
        app: FastAPI,
        sock: socket.socket,
        stop_event: threading.Event,
    ) -> None:
        self._sock = sock
        self._stop_event = stop_event
        config = uvicorn.Config(app, log_level="warning", access_log=False)
        self.server = uvicorn.Server(config)

    def _watch_stop(self) -> None:
        while not self._stop_event.wait(_STOP_POLL_SECONDS):
            if self.server.should_exit:
                return
        self.server.should_exit = True

    def run(self) -> None:
        host, port = self._sock.getsockname()[:2]
        logging.info("Metrics listening on %s:%s", host, port)
        watcher = threading.Thread(target=self._watch_stop, daemon=True)
        watcher.start()
        try:
            self.server.run(sockets=[self._sock])
        except SystemExit as exc:
            raise RuntimeError(f"metrics server failed (exit {exc.code})") from None
        finally:
            self._sock.close()
        if not self._stop_event.is_set():
            raise RuntimeError("metrics server stopped unexpectedly")
        logging.info("Metrics server stopped")
