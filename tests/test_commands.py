import logging
import sys
import threading
import time

from server_keeper.commands import run_command


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def test_success_collects_and_logs_both_streams(caplog):
    caplog.set_level(logging.INFO)
    code = (
        "import sys\n"
        "print('hello')\n"
        "print('oops', file=sys.stderr)\n"
        "print('bye')\n"
    )
    result = run_command(_py(code), "demo")

    assert result.ok
    assert result.returncode == 0
    assert result.stdout == ["hello", "bye"]
    assert result.stderr == ["oops"]
    assert "demo stdout: hello" in caplog.text
    assert "demo stderr: oops" in caplog.text


def test_non_zero_exit_is_an_error():
    result = run_command(_py("import sys; sys.exit(3)"), "fail")

    assert not result.ok
    assert result.returncode == 3
    assert result.error == "exit status 3"


def test_missing_executable_is_an_error():
    result = run_command(["/nonexistent/definitely-not-here"], "missing")

    assert not result.ok
    assert result.returncode is None
    assert result.error


def test_runs_in_cwd(tmp_path):
    result = run_command(_py("import os; print(os.getcwd())"), "cwd", cwd=tmp_path)

    assert result.ok
    assert result.output == str(tmp_path.resolve())


def test_output_streams_while_running(caplog):
    caplog.set_level(logging.INFO)
    seen = threading.Event()

    class _Watch(logging.Handler):
        def emit(self, record):
            if "first" in record.getMessage():
                seen.set()

    handler = _Watch()
    logging.getLogger().addHandler(handler)
    try:
        code = "import time; print('first', flush=True); time.sleep(1)"
        worker = threading.Thread(target=run_command, args=(_py(code), "slow"))
        worker.start()
        assert seen.wait(5)
        assert worker.is_alive()
        worker.join()
    finally:
        logging.getLogger().removeHandler(handler)


def test_cancel_terminates_child():
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    started = time.monotonic()

    result = run_command(_py("import time; time.sleep(30)"), "long", cancel=cancel)

    assert time.monotonic() - started < 10
    assert not result.ok
    assert result.returncode != 0


def test_cancel_not_set_lets_child_finish():
    cancel = threading.Event()
    result = run_command(_py("print('done')"), "short", cancel=cancel)

    assert result.ok
    assert result.stdout == ["done"]


def test_cancel_stops_grandchildren_holding_the_pipes():
    cancel = threading.Event()
    timer = threading.Timer(0.5, cancel.set)
    timer.start()
    started = time.monotonic()

    result = run_command(["sh", "-c", "sleep 20; echo done"], "wrapper", cancel=cancel)

    assert time.monotonic() - started < 8
    assert not result.ok
    assert "done" not in result.stdout


def test_exit_with_background_grandchild_does_not_block():
    started = time.monotonic()

    result = run_command(["sh", "-c", "sleep 20 & echo started"], "detached")

    assert time.monotonic() - started < 15
    assert result.ok
    assert result.stdout == ["started"]
