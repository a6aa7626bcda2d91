import logging
import os

from server_keeper.commands import Runner, run_command
from server_keeper.config import Settings


class BootstrapError(RuntimeError):
    pass


def _require(runner: Runner, args: list[str], name: str, **kwargs) -> None:
    result = runner(args, name, **kwargs)
    if not result.ok:
        raise BootstrapError(f"{name} failed: {result.error}")


def start_ssh_agent(settings: Settings, runner: Runner = run_command) -> None:
    _require(runner, [settings.ssh_script], "start ssh agent")


def ensure_checkout(settings: Settings, runner: Runner = run_command) -> None:
    work_dir = settings.work_dir
    if (work_dir / ".git").exists():
        return
    if work_dir.exists() and any(work_dir.iterdir()):
        raise BootstrapError(f"{work_dir} exists but is not a git checkout")
    logging.info("Cloning %s into %s", settings.world_data_repo, work_dir)
    _require(
        runner,
        [
            "git",
            "clone",
            "--recurse-submodules",
            settings.world_data_repo,
            str(work_dir),
        ],
        "clone world data",
    )


def bootstrap(settings: Settings, runner: Runner = run_command) -> None:
    start_ssh_agent(settings, runner)
    ensure_checkout(settings, runner)
    try:
        os.chdir(settings.work_dir)
    except OSError as exc:
        raise BootstrapError(
            f"Failed to change working directory to {settings.work_dir}: {exc}"
        ) from exc
    # so pushes authenticate with the ssh key
    _require(
        runner,
        ["git", "remote", "set-url", "origin", settings.world_data_repo],
        "set remote url",
        cwd=settings.work_dir,
    )
