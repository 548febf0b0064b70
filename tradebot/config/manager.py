"""
Configuration manager: YAML loading, Pydantic validation and hot reload.
"""

import hashlib
import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from tradebot.config.schemas import AppConfig, BotEntry
from tradebot.utils.logger import LoggerMixin, setup_logging

EXAMPLE_CONFIG: dict[str, Any] = {
    "log_level": "INFO",
    "log_dir": "logs",
    "log_to_file": True,
    "log_to_console": True,
    "json_logs": False,
    "bots": [
        {
            "name": "eth_grid",
            "exchange": "paper",
            "dry_run": True,
            "auto_start": False,
            "strategy": {
                "bot_type": "grid",
                "symbol": "ETH",
                "investment_size": "1000",
                "max_position": "1",
                "metadata": {
                    "grid_spacing": "0.5",
                    "grid_quantity": 10,
                    "grid_mode": "arithmetic",
                    "active_levels": 2,
                },
            },
        },
        {
            "name": "btc_dca",
            "exchange": "paper",
            "dry_run": True,
            "auto_start": False,
            "strategy": {
                "bot_type": "dca",
                "symbol": "BTC",
                "investment_size": "5000",
                "max_position": "0.5",
                "metadata": {
                    "interval_hours": 24,
                    "order_size": "100",
                    "max_orders": 30,
                    "max_daily_orders": 1,
                    "min_order_size": "50",
                    "max_order_size": "200",
                },
            },
        },
    ],
}


ReloadCallback = Callable[[AppConfig], None]


@dataclass(frozen=True)
class ConfigSnapshot:
    """A validated configuration and the hash of the raw file it came from."""

    config: AppConfig
    version: str


def content_hash(raw: dict[str, Any]) -> str:
    """Stable 16-character hash of a parsed YAML document."""
    canonical = json.dumps(raw, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()[:16]


def changed_bots(previous: AppConfig | None, current: AppConfig) -> list[str]:
    """Names of bots added, removed or reconfigured between two loads."""
    before = {bot.name: bot for bot in previous.bots} if previous is not None else {}
    after = {bot.name: bot for bot in current.bots}
    return sorted(
        name for name in before.keys() | after.keys() if before.get(name) != after.get(name)
    )


def _write_yaml(data: dict[str, Any], path: Path) -> None:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)


class _ReloadOnModify(FileSystemEventHandler):
    def __init__(self, manager: "ConfigManager") -> None:
        self.manager = manager

    def on_modified(self, event: FileSystemEvent) -> None:
        if Path(str(event.src_path)) != self.manager.config_path:
            return
        try:
            self.manager.reload()
        except (OSError, yaml.YAMLError, ValidationError) as e:
            # Keep serving the last good snapshot
            self.manager.logger.error("config_hot_reload_failed", error=str(e))


class ConfigManager(LoggerMixin):
    """
    Owns the application file and the bots declared in it.

    A load parses and validates the YAML, then stores it as a snapshot
    versioned by content hash, so a reload of an unchanged file notifies
    nobody. Changed reloads log the affected bot names before running the
    registered callbacks. ``enable_watch`` reloads on save through watchdog.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._snapshot: ConfigSnapshot | None = None
        self._callbacks: list[ReloadCallback] = []
        self._observer: Any | None = None
        self._watch_enabled = False

        self.logger.info("config_manager_created")

    def _log_context(self) -> dict[str, Any]:
        return {"config_path": str(self.config_path)}

    def _read(self) -> ConfigSnapshot:
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            raw = yaml.safe_load(self.config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            self.logger.error("config_yaml_invalid", error=str(e))
            raise
        try:
            config = AppConfig(**raw)
        except ValidationError as e:
            self.logger.error("config_validation_failed", error=str(e))
            raise
        return ConfigSnapshot(config=config, version=content_hash(raw))

    def load(self) -> AppConfig:
        """
        Load and validate the configuration file.

        Raises:
            FileNotFoundError: If the file does not exist
            yaml.YAMLError: If the file is not valid YAML
            ValidationError: If the content fails validation
        """
        self._snapshot = self._read()
        self.logger.info(
            "config_loaded",
            version_hash=self._snapshot.version,
            bots_count=len(self._snapshot.config.bots),
        )
        return self._snapshot.config

    def reload(self) -> AppConfig:
        """Reload the file and notify callbacks when its content changed."""
        previous = self._snapshot
        config = self.load()

        if previous is not None and previous.version == self._snapshot.version:
            self.logger.debug("config_unchanged")
            return config

        self.logger.info(
            "config_changed",
            old_hash=previous.version if previous else None,
            new_hash=self._snapshot.version,
            changed_bots=changed_bots(previous.config if previous else None, config),
        )
        for callback in self._callbacks:
            try:
                callback(config)
            except Exception as e:
                self.logger.error(
                    "config_reload_callback_failed",
                    callback=getattr(callback, "__name__", repr(callback)),
                    error=str(e),
                )
        return config

    def _current(self) -> ConfigSnapshot:
        if self._snapshot is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._snapshot

    def get_config(self) -> AppConfig:
        """
        Raises:
            RuntimeError: If load() has not been called
        """
        return self._current().config

    def get_config_version(self) -> str:
        return self._current().version

    def get_bot_config(self, bot_name: str) -> BotEntry | None:
        return next((bot for bot in self.get_config().bots if bot.name == bot_name), None)

    def auto_start_bots(self) -> list[BotEntry]:
        """Bots flagged to start as soon as the file is loaded."""
        return [bot for bot in self.get_config().bots if bot.auto_start]

    def register_reload_callback(self, callback: ReloadCallback) -> None:
        self._callbacks.append(callback)

    def apply_logging(self) -> None:
        """Configure logging from the loaded file."""
        config = self.get_config()
        setup_logging(
            log_level=config.log_level,
            log_dir=Path(config.log_dir),
            log_to_console=config.log_to_console,
            log_to_file=config.log_to_file,
            json_logs=config.json_logs,
        )

    def enable_watch(self) -> None:
        """Reload automatically when the file changes on disk."""
        if self._watch_enabled:
            self.logger.warning("config_watch_already_enabled")
            return

        observer = Observer()
        observer.schedule(_ReloadOnModify(self), str(self.config_path.parent), recursive=False)
        observer.start()
        self._observer = observer
        self._watch_enabled = True
        self.logger.info("config_watch_enabled")

    def disable_watch(self) -> None:
        if not self._watch_enabled:
            return

        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None

        self._watch_enabled = False
        self.logger.info("config_watch_disabled")

    def save_config(self, config: AppConfig, path: Path | None = None) -> None:
        """Write *config* as YAML to *path* (default: the managed file)."""
        target = path or self.config_path
        _write_yaml(config.model_dump(mode="json"), target)
        self.logger.info("config_saved", path=str(target))

    @staticmethod
    def create_example_config(path: Path) -> None:
        """Write an example application file with a grid and a DCA bot."""
        _write_yaml(EXAMPLE_CONFIG, path)

    def __del__(self) -> None:
        self.disable_watch()
