import logging
import os
import signal
import subprocess
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

TERMINATE_TIMEOUT_SECONDS = 10.0
OUTPUT_DRAIN_SECONDS = 5.0
_POLL_SECONDS = 0.2


@dataclass
class CommandResult:
    name: str
    args: list[str]
    returncode: int | None
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.error is None

    @property
    def output(self) -> str:
        return "\n".join(self.stdout).strip()


Runner = Callable[..., CommandResult]


def _stream_log(stream: IO[str], name: str, label: str, sink: list[str]) -> None:
    with stream:
        for raw in iter(stream.readline, ""):
            line = raw.rstrip("\r\n")
            sink.append(line)
            logging.info("%s %s: %s", name, label, line)


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


def _stop_child(proc: subprocess.Popen, name: str, timeout: float) -> None:
    # the child leads its own process group, so grandchildren get the signal too
    logging.info("Stopping %s (pid %s)", name, proc.pid)
    _signal_group(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logging.warning("%s did not exit after %ss, killing", name, timeout)
        _signal_group(proc, signal.SIGKILL)
        proc.wait()


def _drain(readers: list[threading.Thread], timeout: float) -> bool:
    for reader in readers:
        reader.join(timeout)
    return not any(reader.is_alive() for reader in readers)


def run_command(
    args: Sequence[str],
    name: str,
    cwd: Path | str | None = None,
    cancel: threading.Event | None = None,
    terminate_timeout: float = TERMINATE_TIMEOUT_SECONDS,
) -> CommandResult:
    argv = [str(arg) for arg in args]
    result = CommandResult(name=name, args=argv, returncode=None)
    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            start_new_session=True,
        )
    except OSError as exc:
        result.error = str(exc)
        logging.error("Failed to start command %s, err: %s", name, exc)
        return result

    if proc.stdout is None or proc.stderr is None:
        proc.kill()
        proc.wait()
        result.error = "output streams not attached"
        logging.error("Failed to attach output of %s", name)
        return result

    readers = [
        threading.Thread(
            target=_stream_log,
            args=(proc.stdout, name, "stdout", result.stdout),
            daemon=True,
        ),
        threading.Thread(
            target=_stream_log,
            args=(proc.stderr, name, "stderr", result.stderr),
            daemon=True,
        ),
    ]
    for reader in readers:
        reader.start()

    if cancel is None:
        proc.wait()
    else:
        while True:
            try:
                proc.wait(timeout=_POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if cancel.is_set():
                    _stop_child(proc, name, terminate_timeout)
                    break

    if not _drain(readers, OUTPUT_DRAIN_SECONDS):
        if cancel is not None and cancel.is_set():
            # a leftover grandchild still holds the pipes
            _signal_group(proc, signal.SIGKILL)
            _drain(readers, OUTPUT_DRAIN_SECONDS)
        else:
            logging.warning("Output of %s still open after exit, detaching", name)

    result.returncode = proc.returncode
    if proc.returncode != 0:
        result.error = f"exit status {proc.returncode}"
        logging.error("Command %s exit with err: %s", name, result.error)
    return result
