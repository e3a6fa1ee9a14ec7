"""Configuration directory and file management."""

from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_DIR = Path.home() / ".linear-motion-sync"


class StorageManager:
    """Manages the configuration directory, the config file and the database path."""

    def __init__(self, config_dir: Path | None = None, config_file: Path | None = None) -> None:
        """Initialize storage manager.

        Args:
            config_dir: Directory to store configuration. Defaults to ~/.linear-motion-sync/
            config_file: Explicit config file path. Defaults to <config_dir>/config.yaml
        """
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.config_file = config_file or self.config_dir / "config.yaml"
        self.database_file = self.config_dir / "sync.db"

    def config_exists(self) -> bool:
        """Check whether the configuration file exists."""
        return self.config_file.exists()

    def load_config_data(self) -> dict[str, Any]:
        """Load raw configuration data.

        JSON documents are accepted as well, since JSON is a subset of YAML.

        Returns:
            Configuration dictionary, empty if the file does not exist.

        Raises:
            yaml.YAMLError: If the file is not valid YAML.
        """
        if not self.config_file.exists():
            return {}
        with open(self.config_file) as f:
            return yaml.safe_load(f) or {}

    def save_config_data(self, data: dict[str, Any]) -> None:
        """Write configuration data as YAML.

        Args:
            data: Configuration dictionary to save.
        """
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        # API keys live in this file
        self.config_file.chmod(0o600)

    def resolve_database_path(self, database_path: str | None) -> Path:
        """Resolve the database location.

        Args:
            database_path: Path from configuration, if any. Relative paths are
                resolved against the configuration directory.

        Returns:
            Absolute database path.
        """
        if not database_path:
            return self.database_file
        path = Path(database_path).expanduser()
        if not path.is_absolute():
            path = self.config_dir / path
        return path
