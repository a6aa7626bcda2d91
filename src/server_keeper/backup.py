import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime

from server_keeper.commands import Runner, run_command
from server_keeper.config import BACKUP_MODE_ARCHIVE, Settings
from server_keeper.state import (
    STEP_ARCHIVE,
    STEP_COMMIT,
    STEP_PUSH,
    STEP_STAGE,
    Metrics,
    utc_now,
)

ARCHIVE_NAME = "server.tar.gz"


class BackupEngine:
    """Snapshots the work dir into git on a fixed schedule.

    Steps run strictly in order and the first failure aborts the run after
    bumping that step's counter. Cancellation forces one last run, after
    which ``run_forever`` returns whatever that run's outcome.
    """

    def __init__(
        self,
        settings: Settings,
        metrics: Metrics,
        stop_event: threading.Event,
        runner: Runner = run_command,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.metrics = metrics
        self._stop_event = stop_event
        self._runner = runner
        self._clock = clock
        self.runs = 0

    def steps(self, started: datetime) -> list[tuple[str, list[str]]]:
        steps: list[tuple[str, list[str]]] = []
        if self.settings.backup_mode == BACKUP_MODE_ARCHIVE:
            steps.append(
                (
                    STEP_ARCHIVE,
                    [
                        "tar",
                        f"--exclude=./{ARCHIVE_NAME}",
                        "--exclude=./.git",
                        "-czf",
                        ARCHIVE_NAME,
                        ".",
                    ],
                )
            )
            steps.append((STEP_STAGE, ["git", "add", ARCHIVE_NAME]))
        else:
            steps.append((STEP_STAGE, ["git", "add", "-A"]))
        steps.append((STEP_COMMIT, ["git", "commit", "-m", started.isoformat()]))
        steps.append(
            (STEP_PUSH, ["git", "push", "origin", self.settings.backup_branch])
        )
        return steps

    def run_pipeline(self) -> bool:
        self.runs += 1
        started = self._clock()
        for step, args in self.steps(started):
            result = self._runner(args, f"backup {step}", cwd=self.settings.work_dir)
            if not result.ok:
                self.metrics.backup_errors.labels(cmd=step).inc()
                logging.error("Backup step %s failed: %s", step, result.error)
                return False
        last = self.metrics.update_last_backup(self._clock())
        logging.info("Backup successfully at %s", last.isoformat())
        return True

    def run_forever(self) -> None:
        interval = self.settings.backup_freq
        deadline = time.monotonic() + interval
        while True:
            shutdown = self._stop_event.wait(max(0.0, deadline - time.monotonic()))
            if shutdown:
                logging.info("Backup before termination")
                self.run_pipeline()
                logging.info("Backup engine stopped")
                return
            self.run_pipeline()
            deadline += interval
            now = time.monotonic()
            if deadline < now:
                # ticks missed while a slow pipeline ran are dropped
                deadline = now + interval
