import logging
import threading

from server_keeper.commands import Runner, run_command
from server_keeper.config import Settings
from server_keeper.state import Metrics

SERVER_COMMAND_NAME = "run world server"


class ServerSupervisor:
    def __init__(
        self,
        settings: Settings,
        metrics: Metrics,
        stop_event: threading.Event,
        runner: Runner = run_command,
    ) -> None:
        self.settings = settings
        self.metrics = metrics
        self._stop_event = stop_event
        self._runner = runner
        self.attempts = 0

    def run_once(self) -> bool:
        self.attempts += 1
        logging.info("Starting server (attempt %s)", self.attempts)
        result = self._runner(
            [self.settings.start_script, self.settings.server_jar],
            SERVER_COMMAND_NAME,
            cwd=self.settings.work_dir,
            cancel=self._stop_event,
        )
        if not result.ok:
            if self._stop_event.is_set():
                logging.info("Server stopped for shutdown: %s", result.error)
                return False
            self.metrics.server_errors.inc()
            logging.error("Server exited with error: %s", result.error)
            return False
        logging.info("Server exited cleanly")
        return True

    def run_forever(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(self.settings.restart_cooldown):
                break
            logging.info(
                "Restarting server after %ss cooldown", self.settings.restart_cooldown
            )
        logging.info("Server supervisor stopped")
