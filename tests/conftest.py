import threading
from dataclasses import replace
from pathlib import Path

import pytest

from server_keeper.commands import CommandResult
from server_keeper.config import Settings
from server_keeper.state import Metrics


class FakeRunner:
    """Records calls; ``outcomes`` maps a command-name prefix to results."""

    def __init__(self, outcomes=None, on_call=None) -> None:
        self.calls: list[tuple[list[str], str, dict]] = []
        self.outcomes = outcomes or {}
        self.on_call = on_call
        self._lock = threading.Lock()

    def __call__(self, args, name, **kwargs) -> CommandResult:
        with self._lock:
            self.calls.append((list(args), name, kwargs))
        if self.on_call is not None:
            self.on_call(list(args), name, kwargs)
        for prefix, outcome in self.outcomes.items():
            if name.startswith(prefix):
                if callable(outcome):
                    outcome = outcome()
                if isinstance(outcome, CommandResult):
                    return outcome
                code, stdout = outcome
                return CommandResult(
                    name=name,
                    args=list(args),
                    returncode=code,
                    stdout=stdout.splitlines(),
                    error=None if code == 0 else f"exit status {code}",
                )
        return CommandResult(name=name, args=list(args), returncode=0)

    def names(self) -> list[str]:
        return [name for _, name, _ in self.calls]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        world_data_repo="git@example.com:world/data.git",
        ssh_script="/opt/start-agent.sh",
        start_script="/opt/start.sh",
        server_jar="/opt/paper.jar",
        work_dir=tmp_path,
        backup_freq=0.05,
        metrics_port=9100,
        server_addr=("127.0.0.1", 25565),
        restart_cooldown=0.05,
    )


@pytest.fixture
def plugin_settings(settings: Settings) -> Settings:
    return replace(settings, plugin_branch="main", check_new_plugin_freq=0.05)


@pytest.fixture
def metrics() -> Metrics:
    return Metrics()


@pytest.fixture
def stop_event() -> threading.Event:
    return threading.Event()
