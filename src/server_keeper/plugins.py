import logging
import threading
from pathlib import Path

from server_keeper.commands import Runner, run_command
from server_keeper.config import Settings
from server_keeper.state import Metrics

PLUGINS_DIR_NAME = "plugins"


class PluginUpdater:
    def __init__(
        self,
        settings: Settings,
        metrics: Metrics,
        stop_event: threading.Event,
        runner: Runner = run_command,
    ) -> None:
        if not settings.plugin_branch or settings.check_new_plugin_freq is None:
            raise ValueError("plugin updater needs a branch and a check interval")
        self.settings = settings
        self.metrics = metrics
        self.branch = settings.plugin_branch
        self.interval = settings.check_new_plugin_freq
        self.plugins_dir = Path(settings.work_dir) / PLUGINS_DIR_NAME
        self._stop_event = stop_event
        self._runner = runner

    def _rev_parse(self, ref: str) -> str | None:
        result = self._runner(
            ["git", "rev-parse", ref], f"rev-parse {ref}", cwd=self.plugins_dir
        )
        if not result.ok or not result.output:
            logging.error("Failed to get commit ID of %s, err: %s", ref, result.error)
            return None
        return result.output

    def check_once(self) -> bool:
        fetch = self._runner(
            ["git", "fetch", "origin", self.branch],
            "fetch plugins",
            cwd=self.plugins_dir,
        )
        if not fetch.ok:
            self.metrics.check_plugins_errors.inc()
            logging.error("Failed to fetch plugins, err: %s", fetch.error)
            return False

        # @ refers to the current branch
        local = self._rev_parse("@")
        if local is None:
            self.metrics.check_plugins_errors.inc()
            return False
        logging.info("local commit ID %s", local)

        upstream = self._rev_parse(f"origin/{self.branch}")
        if upstream is None:
            self.metrics.check_plugins_errors.inc()
            return False
        logging.info("upstream commit ID %s", upstream)

        if local == upstream:
            return False

        pull = self._runner(
            ["git", "pull", "origin", self.branch],
            "update plugins",
            cwd=self.plugins_dir,
        )
        if not pull.ok:
            self.metrics.check_plugins_errors.inc()
            logging.error("Failed to pull latest plugins, err: %s", pull.error)
            return False
        logging.info("Plugins updated %s -> %s", local, upstream)
        return True

    def run_forever(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.check_once()
        logging.info("Plugin updater stopped")
