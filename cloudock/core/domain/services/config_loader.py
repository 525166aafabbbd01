"""Cluster configuration loader from YAML or JSON files."""

import json
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from pydantic import ValidationError

from cloudock.core.domain.models import ClusterConfig, ConfigurationError

logger = structlog.get_logger(__name__)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into a copy of base; override wins on leaves."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ClusterConfigLoader:
    """
    Load a ClusterConfig from a settings file and an optional secrets file.

    Credentials usually live in a separate file kept out of version control;
    it is merged over the settings before validation.

    Usage:
        loader = ClusterConfigLoader()
        config = loader.load("cluster.yaml", secrets_path="sensitive.json")
    """

    def load_file(self, file_path: str | Path) -> dict[str, Any]:
        """
        Read a YAML (.yaml, .yml) or JSON (.json) mapping.

        Raises:
            ConfigurationError: If the file is missing, unreadable, or not a mapping
        """
        path = Path(file_path)

        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {file_path}")

        try:
            if path.suffix in (".yaml", ".yml"):
                data = self._load_yaml(path)
            elif path.suffix == ".json":
                data = self._load_json(path)
            else:
                raise ConfigurationError(
                    f"Unsupported file format: {path.suffix}. "
                    "Supported formats: .yaml, .yml, .json"
                )
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot parse {file_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{file_path} must contain a mapping at top level")
        return data

    def _load_yaml(self, path: Path) -> Any:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _load_json(self, path: Path) -> Any:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def parse(self, data: dict[str, Any]) -> ClusterConfig:
        """
        Validate raw settings into a ClusterConfig.

        Image entries take their name from their catalog key when none is given.

        Raises:
            ConfigurationError: If validation fails
        """
        data = dict(data)
        images = data.get("images") or {}
        if not isinstance(images, dict):
            raise ConfigurationError("images must be a mapping of name to image")
        data["images"] = {
            name: {"name": name, **image} if isinstance(image, dict) else image
            for name, image in images.items()
        }

        try:
            return ClusterConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def load(
        self,
        file_path: str | Path,
        secrets_path: Optional[str | Path] = None,
    ) -> ClusterConfig:
        """
        Load, merge, and validate the cluster configuration.

        Args:
            file_path: Settings file
            secrets_path: Optional credentials file merged over the settings

        Returns:
            Validated, immutable configuration
        """
        data = self.load_file(file_path)
        if secrets_path is not None:
            data = deep_merge(data, self.load_file(secrets_path))

        config = self.parse(data)
        logger.debug(
            "config_loaded",
            path=str(file_path),
            cluster=config.cluster,
            node_types=len(config.node_types),
            images=len(config.images),
        )
        return config


def load_config(
    file_path: str | Path,
    secrets_path: Optional[str | Path] = None,
) -> ClusterConfig:
    """Shortcut for ClusterConfigLoader().load()."""
    return ClusterConfigLoader().load(file_path, secrets_path)
