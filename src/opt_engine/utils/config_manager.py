"""Configuration management utilities."""

import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from ..models.config import Config

logger = logging.getLogger(__name__)


class ConfigManager:
    """Manages engine configuration from files and environment variables."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to config directory or file. If None, uses default.
                A directory loads its default.yaml; a file is loaded as the
                base configuration instead.
        """
        self.config_dir, self.config_file = self._resolve_config_path(config_path)
        self.config = self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> tuple[Path, str]:
        """Resolve configuration directory and base file name."""
        if config_path:
            path = Path(config_path)
            if path.is_file():
                return path.parent, path.name
            return path, "default.yaml"

        # Default: packaged config directory next to the sub-packages
        return Path(__file__).parent.parent / "config", "default.yaml"

    def _load_config(self) -> Config:
        """Load configuration from files and environment variables."""
        config_data = self._load_yaml(self.config_file)

        env = os.getenv("ENVIRONMENT", "").lower()
        if env and env != "default":
            env_config = self._load_yaml(f"{env}.yaml")
            config_data = self._merge_dict(config_data, env_config)

        self._apply_env_vars(config_data)

        return Config.from_dict(config_data)

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """Load YAML configuration file."""
        config_path = self.config_dir / filename
        if not config_path.exists():
            if filename == self.config_file:
                raise FileNotFoundError(f"Base config file not found: {config_path}")
            return {}

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
        except OSError as e:
            raise ValueError(f"Error loading config file {config_path}: {e}") from e

    def _merge_dict(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dict(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_vars(self, config_data: Dict[str, Any]) -> None:
        """Apply environment variable overrides."""
        env_mappings = {
            "OPT_ENGINE_LOG_LEVEL": ("logging", "level"),
            "OPT_ENGINE_DEFAULT_ALGORITHM": ("solvers", "default"),
            "OPT_ENGINE_TIME_LIMIT": ("solvers", "time_limit"),
            "OPT_ENGINE_STORAGE_BACKEND": ("storage", "backend"),
            "OPT_ENGINE_STORAGE_PATH": ("storage", "path"),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            if section not in config_data:
                config_data[section] = {}

            if key == "time_limit":
                try:
                    config_data[section][key] = float(value)
                except ValueError:
                    logger.warning(f"Ignoring non-numeric {env_var}={value!r}")
            else:
                config_data[section][key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "logging.level")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self.config.model_dump()

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_config(self) -> Config:
        """Get the complete configuration object."""
        return self.config

    def solver_config(self, algorithm: str) -> Dict[str, Any]:
        """Build the constructor config for one solver.

        Args:
            algorithm: Algorithm name (e.g. "genetic")

        Returns:
            Dictionary with time limit, tolerance and parameter overrides
        """
        solvers = self.config.solvers
        return {
            "time_limit": solvers.time_limit,
            "tolerance": solvers.tolerance,
            "parameters": dict(solvers.parameters.get(algorithm, {})),
        }
