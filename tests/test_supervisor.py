import threading
import time
from dataclasses import replace

from server_keeper.supervisor import SERVER_COMMAND_NAME, ServerSupervisor

from conftest import FakeRunner


def test_failed_runs_counted_and_spaced_by_cooldown(settings, metrics, stop_event):
    settings = replace(settings, restart_cooldown=0.1)
    starts: list[float] = []

    def on_call(args, name, kwargs):
        starts.append(time.monotonic())
        if len(starts) == 4:
            stop_event.set()

    runner = FakeRunner({SERVER_COMMAND_NAME: (1, "")}, on_call=on_call)
    supervisor = ServerSupervisor(settings, metrics, stop_event, runner=runner)

    supervisor.run_forever()

    assert len(starts) == 4
    # the last run was cut short by shutdown and is not an error
    assert metrics.server_error_count() == 3
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= 0.09 for gap in gaps)


def test_passes_script_jar_and_cancellation(settings, metrics, stop_event):
    def on_call(args, name, kwargs):
        stop_event.set()

    runner = FakeRunner(on_call=on_call)
    supervisor = ServerSupervisor(settings, metrics, stop_event, runner=runner)

    supervisor.run_forever()

    args, name, kwargs = runner.calls[0]
    assert args == [settings.start_script, settings.server_jar]
    assert name == SERVER_COMMAND_NAME
    assert kwargs["cancel"] is stop_event
    assert kwargs["cwd"] == settings.work_dir


def test_clean_exit_restarts_without_counting(settings, metrics, stop_event):
    def on_call(args, name, kwargs):
        if len(runner.calls) == 3:
            stop_event.set()

    runner = FakeRunner(on_call=on_call)
    supervisor = ServerSupervisor(settings, metrics, stop_event, runner=runner)

    supervisor.run_forever()

    assert len(runner.calls) == 3
    assert metrics.server_error_count() == 0


def test_no_start_after_cancellation(settings, metrics, stop_event):
    stop_event.set()
    runner = FakeRunner()
    supervisor = ServerSupervisor(settings, metrics, stop_event, runner=runner)

    supervisor.run_forever()

    assert runner.calls == []


def test_cancel_during_cooldown_stops_promptly(settings, metrics, stop_event):
    settings = replace(settings, restart_cooldown=30)
    runner = FakeRunner({SERVER_COMMAND_NAME: (1, "")})
    supervisor = ServerSupervisor(settings, metrics, stop_event, runner=runner)
    worker = threading.Thread(target=supervisor.run_forever)
    worker.start()

    time.sleep(0.2)
    stop_event.set()
    worker.join(5)

    assert not worker.is_alive()
    assert len(runner.calls) == 1
    assert metrics.server_error_count() == 1


def test_run_stopped_by_shutdown_is_not_an_error(settings, metrics, stop_event):
    def on_call(args, name, kwargs):
        # shutdown arrives while the server is running and kills it
        stop_event.set()

    runner = FakeRunner({SERVER_COMMAND_NAME: (-15, "")}, on_call=on_call)
    supervisor = ServerSupervisor(settings, metrics, stop_event, runner=runner)

    supervisor.run_forever()

    assert len(runner.calls) == 1
    assert metrics.server_error_count() == 0
