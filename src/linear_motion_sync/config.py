"""Configuration models and loading for the Linear/Motion synchronizer."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from linear_motion_sync.errors import ConfigError
from linear_motion_sync.utils.storage import StorageManager

logger = logging.getLogger(__name__)

MOTION_KEY_PLACEHOLDER = "your_motion_api_key_here"
LINEAR_KEY_PLACEHOLDER = "your_linear_api_key_here"


def estimate_key(estimate: float) -> str:
    """Render an estimate the way conversion tables key it.

    Whole numbers drop their fractional part (``3.0`` -> ``"3"``), anything
    else keeps its shortest representation (``0.5`` -> ``"0.5"``).
    """
    if float(estimate).is_integer():
        return str(int(estimate))
    return repr(float(estimate))


class TimeEstimateStrategy(BaseModel):
    """Tables converting Linear estimates into Motion durations (minutes)."""

    fibonacci: dict[str, int] | None = None
    tshirt: dict[str, int] | None = None
    linear: dict[str, int] | None = None
    points: dict[str, int] | None = None
    default_duration_mins: int | None = None

    def _tables(self) -> list[dict[str, int] | None]:
        # Precedence order for lookups by value
        return [self.fibonacci, self.tshirt, self.linear, self.points]

    def convert_estimate(self, estimate: float, estimate_type: str) -> int | None:
        """Convert an estimate using one named table.

        Args:
            estimate: Linear estimate value.
            estimate_type: One of fibonacci, tshirt (or t-shirt), linear, points.

        Returns:
            Duration in minutes, or None if the table or key is missing.
        """
        tables = {
            "fibonacci": self.fibonacci,
            "tshirt": self.tshirt,
            "t-shirt": self.tshirt,
            "linear": self.linear,
            "points": self.points,
        }
        table = tables.get(estimate_type.lower())
        if not table:
            return None
        return table.get(estimate_key(estimate))

    def convert_estimate_by_value(self, estimate: float) -> int | None:
        """Convert an estimate using the first table that knows its key.

        Tables are checked in order: fibonacci, tshirt, linear, points.

        Args:
            estimate: Linear estimate value.

        Returns:
            Duration in minutes, the strategy default when no table matches,
            or None when there is no default either.
        """
        key = estimate_key(estimate)
        for table in self._tables():
            if table and key in table:
                return table[key]
        return self.default_duration_mins


class SyncRules(BaseModel):
    """Rules controlling how issues become tasks."""

    default_task_duration_mins: int = Field(default=60, ge=0)
    completed_linear_tag: str = "motioned"
    time_estimate_strategy: TimeEstimateStrategy = Field(default_factory=TimeEstimateStrategy)

    def duration_for(self, estimate: float | None) -> int:
        """Task duration in minutes for an (optional) estimate."""
        if estimate is None:
            return self.default_task_duration_mins
        converted = self.time_estimate_strategy.convert_estimate_by_value(estimate)
        if converted is None:
            return self.default_task_duration_mins
        return converted


class SyncSource(BaseModel):
    """One Linear workspace to mirror into Motion."""

    name: str
    linear_api_key: str
    projects: list[str] | None = None
    sync_rules: SyncRules | None = None

    def effective_sync_rules(self, global_rules: SyncRules) -> SyncRules:
        """Return the source's own rules, or the global ones when it has none."""
        return self.sync_rules if self.sync_rules is not None else global_rules


class AppConfig(BaseModel):
    """Top-level application configuration."""

    motion_api_key: str
    sync_sources: list[SyncSource] = Field(default_factory=list)
    global_sync_rules: SyncRules = Field(default_factory=SyncRules)
    database_path: str | None = None

    def validate_config(self) -> None:
        """Check semantic constraints pydantic cannot express.

        Raises:
            ConfigError: If the configuration is unusable.
        """
        if not self.motion_api_key.strip() or self.motion_api_key == MOTION_KEY_PLACEHOLDER:
            raise ConfigError("Motion API key is required")

        if not self.sync_sources:
            raise ConfigError("At least one sync source is required")

        seen: set[str] = set()
        for idx, source in enumerate(self.sync_sources):
            if not source.name.strip():
                raise ConfigError(f"Name is required for sync source {idx}")
            if source.name in seen:
                raise ConfigError(f"Duplicate sync source name '{source.name}'")
            seen.add(source.name)

            key = source.linear_api_key
            if not key.strip() or key == LINEAR_KEY_PLACEHOLDER:
                raise ConfigError(
                    f"Linear API key is required for sync source {idx} ({source.name})"
                )

        if self.database_path is not None and not self.database_path.strip():
            raise ConfigError("Database path must not be empty")

    def find_source(self, name: str) -> SyncSource | None:
        """Find a configured sync source by name."""
        for source in self.sync_sources:
            if source.name == name:
                return source
        return None


def default_config() -> AppConfig:
    """Template configuration written by ``init``."""
    strategy = TimeEstimateStrategy(
        fibonacci={"1": 30, "2": 60, "3": 120, "5": 240, "8": 480},
        tshirt={"XS": 30, "S": 60, "M": 120, "L": 240, "XL": 480},
        default_duration_mins=60,
    )
    rules = SyncRules(
        default_task_duration_mins=60,
        completed_linear_tag="motioned",
        time_estimate_strategy=strategy,
    )
    return AppConfig(
        motion_api_key=MOTION_KEY_PLACEHOLDER,
        sync_sources=[
            SyncSource(
                name="my-linear-workspace",
                linear_api_key=LINEAR_KEY_PLACEHOLDER,
                projects=["project-id-1", "project-id-2"],
            )
        ],
        global_sync_rules=rules,
    )


def parse_config(data: dict[str, Any]) -> AppConfig:
    """Build and validate an ``AppConfig`` from raw data.

    Raises:
        ConfigError: If the data does not describe a valid configuration.
    """
    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    config.validate_config()
    return config


def load_config(storage: StorageManager) -> AppConfig:
    """Load and validate the configuration file managed by ``storage``.

    Args:
        storage: Storage manager pointing at the configuration file.

    Returns:
        Validated configuration.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    path = storage.config_file
    logger.debug(f"Loading configuration from {path}")

    if not storage.config_exists():
        raise ConfigError(
            f"Configuration file {path} not found. Run 'linear-motion-sync init' first."
        )

    try:
        data = storage.load_config_data()
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")

    config = parse_config(data)
    logger.debug(f"Configuration loaded: {len(config.sync_sources)} sync sources")
    return config


def read_database_path(storage: StorageManager) -> str | None:
    """Read the configured database path without validating the rest.

    Commands that only touch the local database must work with a template
    whose API keys are still placeholders.

    Raises:
        ConfigError: If the file cannot be read or ``database_path`` is not a string.
    """
    if not storage.config_exists():
        return None

    path = storage.config_file
    try:
        data = storage.load_config_data()
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read configuration file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")

    database_path = data.get("database_path")
    if database_path is not None and not isinstance(database_path, str):
        raise ConfigError(f"database_path in {path} must be a string")
    return database_path


def write_template(storage: StorageManager, force: bool = False) -> Path:
    """Write the template configuration.

    Args:
        storage: Storage manager pointing at the configuration file.
        force: Overwrite an existing file.

    Returns:
        Path of the written file.

    Raises:
        ConfigError: If the file exists and ``force`` is not set.
    """
    if storage.config_exists() and not force:
        raise ConfigError(
            f"Config file {storage.config_file} already exists. Use --force to overwrite."
        )
    storage.save_config_data(default_config().model_dump(mode="json", exclude_none=True))
    return storage.config_file
