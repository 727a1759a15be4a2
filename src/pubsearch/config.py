"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (PUBSEARCH__SCHEDULER__CONCURRENCY=4)
  2. pubsearch.yaml         (searched in cwd, then ~/.config/pubsearch/)
  3. Hardcoded defaults

The config file is optional — all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("pubsearch")
_DB_FILENAME = "index.db"


def _find_config_file() -> str | None:
    """Return the path of the first pubsearch.yaml found, or None."""
    candidates = [
        Path("pubsearch.yaml"),
        Path.home() / ".config" / "pubsearch" / "pubsearch.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class StorageSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Defaults to index.db under Settings.data_dir.
    db_path: str | None = None
    # Another instance writing within this window makes the periodic write a no-op.
    snapshot_recent_hours: float = 6


class BackendSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_url: str = "http://localhost:8080"
    sdk_docs_url: str | None = None
    timeout_seconds: float = 30.0


class SchedulerSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    change_feed_poll_minutes: float = 10
    sweep_interval_hours: float = 2
    stats_interval_minutes: float = 5
    queue_size: int = 1000
    concurrency: int = 1


class UpdaterSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # A restored snapshot must hold more documents than this to be trusted.
    snapshot_min_documents: int = 10
    snapshot_write_hours: float = 6
    snapshot_write_jitter_minutes: int = 120
    analysis_grace_days: int = 7
    sdk_retry_seconds: float = 60
    bootstrap_log_every: int = 500


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: PUBSEARCH__STORAGE__DB_PATH=/tmp/x.db
        env_prefix="PUBSEARCH__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    data_dir: str = _DEFAULT_DATA_DIR
    logging: LoggingSettings = LoggingSettings()
    storage: StorageSettings = StorageSettings()
    backend: BackendSettings = BackendSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    updater: UpdaterSettings = UpdaterSettings()

    @model_validator(mode="after")
    def _default_db_path(self) -> Settings:
        if self.storage.db_path is None:
            db_path = str(Path(self.data_dir) / _DB_FILENAME)
            self.storage = self.storage.model_copy(update={"db_path": db_path})
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
