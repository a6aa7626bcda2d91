import argparse
import logging
import socket
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from server_keeper.backup import BackupEngine
from server_keeper.bootstrap import BootstrapError, bootstrap
from server_keeper.config import Settings, load_settings
from server_keeper.plugins import PluginUpdater
from server_keeper.shutdown import ShutdownCoordinator
from server_keeper.state import Metrics
from server_keeper.supervisor import ServerSupervisor
from server_keeper.webapp import MetricsServer, bind_socket, create_app

EXIT_CONFIG = 1
EXIT_BOOTSTRAP = 2
EXIT_BIND = 3
EXIT_TASK = 4
JOIN_POLL_SECONDS = 0.5


def setup_logging(log_path: Path | None, level: str = "INFO") -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=handlers,
        force=True,
    )


class TaskGroup:
    """Runs tasks in threads; the first failure stops the rest."""

    def __init__(self, stop_event: threading.Event) -> None:
        self._stop_event = stop_event
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._reason: str | None = None
        self.failed = False

    def _record(self, reason: str, failed: bool) -> None:
        with self._lock:
            if self._reason is None:
                self._reason = reason
                self.failed = failed

    def go(self, name: str, fn: Callable[[], str | None]) -> threading.Thread:
        def _target() -> None:
            try:
                reason = fn()
            except Exception as exc:
                logging.exception("Task %s failed", name)
                self._record(f"{name} failed: {exc}", failed=True)
                self._stop_event.set()
                return
            if reason:
                self._record(reason, failed=False)

        thread = threading.Thread(target=_target, name=name, daemon=True)
        self._threads.append(thread)
        thread.start()
        return thread

    def wait(self) -> str | None:
        for thread in self._threads:
            # short joins keep the main thread free to run signal handlers
            while thread.is_alive():
                thread.join(JOIN_POLL_SECONDS)
        with self._lock:
            return self._reason


@dataclass
class Runtime:
    settings: Settings
    metrics: Metrics
    stop_event: threading.Event
    coordinator: ShutdownCoordinator
    supervisor: ServerSupervisor
    metrics_server: MetricsServer
    backup: BackupEngine | None = None
    plugins: PluginUpdater | None = None


def create_runtime(settings: Settings, sock: socket.socket) -> Runtime:
    metrics = Metrics()
    stop_event = threading.Event()
    app = create_app(metrics, settings.server_addr)
    runtime = Runtime(
        settings=settings,
        metrics=metrics,
        stop_event=stop_event,
        coordinator=ShutdownCoordinator(stop_event),
        supervisor=ServerSupervisor(settings, metrics, stop_event),
        metrics_server=MetricsServer(app, sock, stop_event),
    )
    if not settings.disable_backup:
        runtime.backup = BackupEngine(settings, metrics, stop_event)
    if settings.plugins_enabled:
        runtime.plugins = PluginUpdater(settings, metrics, stop_event)
    return runtime


def start_tasks(runtime: Runtime) -> TaskGroup:
    group = TaskGroup(runtime.stop_event)
    group.go("server", runtime.supervisor.run_forever)
    group.go("metrics", runtime.metrics_server.run)
    group.go("shutdown", runtime.coordinator.wait)
    if runtime.backup is not None:
        group.go("backup", runtime.backup.run_forever)
    else:
        logging.info("Backups disabled")
    if runtime.plugins is not None:
        group.go("plugins", runtime.plugins.run_forever)
    return group


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Minecraft server supervisor with git world backups"
    )
    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Metrics/health listen host",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level",
    )
    parser.add_argument(
        "--skip-bootstrap",
        action="store_true",
        help="Do not start the ssh agent or touch the checkout before starting",
    )
    args = parser.parse_args()

    try:
        settings = load_settings()
    except (KeyError, ValueError) as exc:
        print(f"ERROR code={EXIT_CONFIG} Failed to load config, err: {exc}")
        sys.exit(EXIT_CONFIG)

    setup_logging(settings.log_path, args.log_level)

    if not args.skip_bootstrap:
        try:
            bootstrap(settings)
        except BootstrapError as exc:
            logging.error("ERROR code=%s %s", EXIT_BOOTSTRAP, exc)
            sys.exit(EXIT_BOOTSTRAP)

    try:
        sock = bind_socket(args.host, settings.metrics_port)
    except OSError as exc:
        logging.error(
            "ERROR code=%s Failed to listen on %s:%s, err: %s",
            EXIT_BIND,
            args.host,
            settings.metrics_port,
            exc,
        )
        sys.exit(EXIT_BIND)

    runtime = create_runtime(settings, sock)
    runtime.coordinator.install()
    logging.info("START")
    group = start_tasks(runtime)
    reason = group.wait()
    runtime.coordinator.restore()
    logging.info("Terminating, reason: %s", reason)
    if group.failed:
        sys.exit(EXIT_TASK)


if __name__ == "__main__":
    main()
