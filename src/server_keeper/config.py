import math
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

BACKUP_MODE_ARCHIVE = "archive"
BACKUP_MODE_COMMIT = "commit"
BACKUP_MODES = (BACKUP_MODE_ARCHIVE, BACKUP_MODE_COMMIT)

DEFAULT_BACKUP_BRANCH = "main"
DEFAULT_RESTART_COOLDOWN_SECONDS = 30.0
DEFAULT_SERVER_HOST = "127.0.0.1"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}


@dataclass(frozen=True)
class Settings:
    world_data_repo: str
    ssh_script: str
    start_script: str
    server_jar: str
    work_dir: Path
    backup_freq: float
    metrics_port: int
    server_addr: tuple[str, int]
    disable_backup: bool = False
    backup_mode: str = BACKUP_MODE_ARCHIVE
    backup_branch: str = DEFAULT_BACKUP_BRANCH
    plugin_branch: str | None = None
    check_new_plugin_freq: float | None = None
    restart_cooldown: float = DEFAULT_RESTART_COOLDOWN_SECONDS
    log_path: Path | None = None

    @property
    def plugins_enabled(self) -> bool:
        return bool(self.plugin_branch) and self.check_new_plugin_freq is not None


def parse_duration(value: str) -> float:
    """Parse ``90s``, ``1h30m``, ``250ms`` or a bare number of seconds."""
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos != len(text):
            raise ValueError(f"invalid duration {value!r}") from None
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"duration must be >= 0 (got {value!r})")
    return seconds


def parse_bool(value: str) -> bool:
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean {value!r}")


def parse_port(value: str, name: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ValueError(f"{name} must be a port number (got {value!r})") from None
    if not 0 < port < 65536:
        raise ValueError(f"{name} out of range (got {port})")
    return port


def parse_addr(value: str, name: str) -> tuple[str, int]:
    host, sep, port = value.strip().rpartition(":")
    if not sep:
        return DEFAULT_SERVER_HOST, parse_port(port, name)
    return host or DEFAULT_SERVER_HOST, parse_port(port, name)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ

    def _require_str(name: str) -> str:
        value = env.get(name, "")
        if not value:
            raise KeyError(f"{name} not specified in env var")
        return value

    def _optional_str(name: str) -> str | None:
        return env.get(name) or None

    def _require_positive_duration(name: str) -> float:
        seconds = parse_duration(_require_str(name))
        if seconds <= 0:
            raise ValueError(f"{name} must be > 0")
        return seconds

    def _optional_duration(name: str) -> float | None:
        value = env.get(name)
        if not value:
            return None
        seconds = parse_duration(value)
        if seconds <= 0:
            raise ValueError(f"{name} must be > 0")
        return seconds

    def _read_bool(name: str) -> bool:
        value = env.get(name, "")
        if not value:
            return False
        try:
            return parse_bool(value)
        except ValueError as exc:
            raise ValueError(f"{name}: {exc}") from None

    world_data_repo = _require_str("WORLD_DATA_REPO")
    ssh_script = _require_str("SSH_SCRIPT")
    start_script = _require_str("START_SCRIPT")
    server_jar = _require_str("SERVER_JAR")
    work_dir = Path(_require_str("WORK_DIR")).expanduser().absolute()
    backup_freq = _require_positive_duration("BACKUP_FREQ")
    metrics_port = parse_port(_require_str("METRICS_PORT"), "METRICS_PORT")
    server_addr = parse_addr(_require_str("MINECRAFT_PORT"), "MINECRAFT_PORT")
    disable_backup = _read_bool("DISABLE_BACKUP")

    backup_mode = env.get("BACKUP_MODE") or BACKUP_MODE_ARCHIVE
    if backup_mode not in BACKUP_MODES:
        raise ValueError(
            f"BACKUP_MODE must be one of {', '.join(BACKUP_MODES)} (got {backup_mode!r})"
        )

    plugin_branch = _optional_str("PLUGIN_BRANCH")
    check_new_plugin_freq = _optional_duration("CHECK_NEW_PLUGIN_FREQ")
    if bool(plugin_branch) != (check_new_plugin_freq is not None):
        raise ValueError(
            "PLUGIN_BRANCH and CHECK_NEW_PLUGIN_FREQ must be set together"
        )

    restart_cooldown = DEFAULT_RESTART_COOLDOWN_SECONDS
    if env.get("RESTART_COOLDOWN"):
        restart_cooldown = parse_duration(env["RESTART_COOLDOWN"])

    log_path = _optional_str("LOG_PATH")

    return Settings(
        world_data_repo=world_data_repo,
        ssh_script=ssh_script,
        start_script=start_script,
        server_jar=server_jar,
        work_dir=work_dir,
        backup_freq=backup_freq,
        metrics_port=metrics_port,
        server_addr=server_addr,
        disable_backup=disable_backup,
        backup_mode=backup_mode,
        backup_branch=_optional_str("BACKUP_BRANCH") or DEFAULT_BACKUP_BRANCH,
        plugin_branch=plugin_branch,
        check_new_plugin_freq=check_new_plugin_freq,
        restart_cooldown=restart_cooldown,
        log_path=Path(log_path) if log_path else None,
    )
