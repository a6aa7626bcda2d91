import threading
from datetime import datetime, timezone

from prometheus_client import CollectorRegistry, Counter

NAMESPACE = "community_minecraft"

STEP_ARCHIVE = "archive"
STEP_STAGE = "stage"
STEP_COMMIT = "commit"
STEP_PUSH = "push"
BACKUP_STEPS = (STEP_ARCHIVE, STEP_STAGE, STEP_COMMIT, STEP_PUSH)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Metrics:
    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self.server_errors = Counter(
            "server_errors",
            "Count of errors in starting minecraft server",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self.check_plugins_errors = Counter(
            "check_plugins_errors",
            "Count of errors in checking new plugins",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self.backup_errors = Counter(
            "backup_errors",
            "Count of errors during backup",
            ["cmd"],
            namespace=NAMESPACE,
            registry=self.registry,
        )
        for step in BACKUP_STEPS:
            self.backup_errors.labels(cmd=step)

        self._lock = threading.Lock()
        self._last_backup: datetime | None = None

    def update_last_backup(self, when: datetime | None = None) -> datetime:
        when = when or utc_now()
        with self._lock:
            if self._last_backup is None or when > self._last_backup:
                self._last_backup = when
            return self._last_backup

    @property
    def last_backup(self) -> datetime | None:
        with self._lock:
            return self._last_backup

    def server_error_count(self) -> float:
        return self._sample("server_errors_total")

    def check_plugins_error_count(self) -> float:
        return self._sample("check_plugins_errors_total")

    def backup_error_count(self, step: str) -> float:
        return self._sample("backup_errors_total", {"cmd": step})

    def _sample(self, name: str, labels: dict[str, str] | None = None) -> float:
        value = self.registry.get_sample_value(f"{NAMESPACE}_{name}", labels or {})
        return value or 0.0
