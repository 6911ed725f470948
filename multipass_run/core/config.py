import copy
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from omegaconf import OmegaConf
from omegaconf.errors import InterpolationResolutionError

from multipass_run.constants import (
    LAUNCH_POLL_MAX_ATTEMPTS,
    LAUNCH_TIMEOUT_SECONDS,
    MULTIPASS_PATHS,
    POLL_INTERVAL_SECONDS,
    POLL_MAX_ATTEMPTS,
    SSH_CONFIG_PATH,
    SSH_KEY_PATH,
    SSH_TEST_TIMEOUT_SECONDS,
    SSH_USERNAME,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MULTIPASS_RUN_CONFIG"
DEFAULT_CONFIG_FILE = "multipass-run.yaml"
SSH_USERNAME_PATTERN = r"^[a-z_][a-z0-9_-]{0,31}$"


class ConfigLoader:
    """Load and merge YAML configuration with defaults."""

    def __init__(self) -> None:
        self.BUILT_IN_DEFAULTS = {
            "multipass_paths": list(MULTIPASS_PATHS),
            "poll_interval_seconds": POLL_INTERVAL_SECONDS,
            "poll_max_attempts": POLL_MAX_ATTEMPTS,
            "launch_poll_max_attempts": LAUNCH_POLL_MAX_ATTEMPTS,
            "launch_timeout_seconds": LAUNCH_TIMEOUT_SECONDS,
            "ssh_username": SSH_USERNAME,
            "ssh_key_path": SSH_KEY_PATH,
            "ssh_config_path": SSH_CONFIG_PATH,
            "ssh_test_timeout_seconds": SSH_TEST_TIMEOUT_SECONDS,
        }

    def load_config(self, config_path: str | None = None) -> dict[str, Any]:
        """Load configuration from YAML file.

        Parameters
        ----------
        config_path : str | None
            Path to YAML config file. If None, checks MULTIPASS_RUN_CONFIG env
            var, then falls back to multipass-run.yaml

        Returns
        -------
        dict[str, Any]
            Parsed configuration with a defaults section, with all variable
            interpolations resolved

        Raises
        ------
        ValueError
            If the file is not valid YAML or a variable cannot be resolved
        RuntimeError
            If the file exists but cannot be read
        omegaconf.errors.InterpolationResolutionError
            If undefined variables are referenced or circular references exist
        """
        if config_path is None:
            config_path = os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_FILE)

        config_file = Path(config_path)

        if not config_file.exists():
            return {"defaults": {}}

        try:
            cfg = OmegaConf.load(config_file)
        except yaml.YAMLError as e:
            logger.error("Failed to parse YAML config file %s: %s", config_file, e)
            raise ValueError(f"Invalid YAML in {config_file}: {e}") from e
        except OSError as e:
            logger.error("Failed to read config file %s: %s", config_file, e)
            raise RuntimeError(f"Failed to read config file {config_file}: {e}") from e

        if cfg is None or not OmegaConf.is_dict(cfg):
            return {"defaults": {}}

        if "vars" in cfg:
            vars_dict = OmegaConf.to_container(cfg.vars, resolve=False)
            for key, value in vars_dict.items():
                if key not in cfg:
                    cfg[key] = value

        try:
            config = OmegaConf.to_container(cfg, resolve=True, throw_on_missing=True)
        except InterpolationResolutionError as e:
            logger.error("Failed to resolve configuration variables: %s", e)
            raise
        except (ValueError, KeyError, AttributeError) as e:
            logger.error("Failed to resolve configuration variables: %s", e)
            raise ValueError(f"Configuration variable resolution error: {e}") from e

        return config

    def get_effective_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Merge built-in defaults with the file's defaults section.

        Parameters
        ----------
        config : dict[str, Any]
            Full configuration from YAML

        Returns
        -------
        dict[str, Any]
            Built-in defaults overridden by YAML defaults
        """
        merged = copy.deepcopy(self.BUILT_IN_DEFAULTS)

        yaml_defaults = config.get("defaults") or {}
        if not isinstance(yaml_defaults, dict):
            raise ValueError("defaults must be a mapping")

        for key, value in yaml_defaults.items():
            merged[key] = value

        return merged

    def validate_config(self, config: dict[str, Any]) -> None:
        """Validate configuration has correct types and ranges.

        Parameters
        ----------
        config : dict[str, Any]
            Effective configuration to validate

        Raises
        ------
        ValueError
            If configuration is invalid
        """
        self._validate_multipass_paths(config)
        self._validate_numbers(config)
        self._validate_ssh(config)

    def _validate_multipass_paths(self, config: dict[str, Any]) -> None:
        paths = config.get("multipass_paths")

        if not isinstance(paths, list) or not paths:
            raise ValueError("multipass_paths must be a non-empty list")

        for item in paths:
            if not isinstance(item, str) or not item:
                raise ValueError("multipass_paths entries must be non-empty strings")

    def _validate_numbers(self, config: dict[str, Any]) -> None:
        """Validate intervals, timeouts and attempt budgets.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration to validate

        Raises
        ------
        ValueError
            If a value has the wrong type or is not positive
        """
        positive_numbers = (
            "poll_interval_seconds",
            "launch_timeout_seconds",
            "ssh_test_timeout_seconds",
        )
        positive_integers = ("poll_max_attempts", "launch_poll_max_attempts")

        for field in positive_numbers:
            if field not in config:
                continue
            value = config[field]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{field} must be a number")
            if value <= 0:
                raise ValueError(f"{field} must be positive")

        for field in positive_integers:
            if field not in config:
                continue
            value = config[field]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{field} must be an integer")
            if value < 1:
                raise ValueError(f"{field} must be at least 1")

    def _validate_ssh(self, config: dict[str, Any]) -> None:
        for field in ("ssh_key_path", "ssh_config_path"):
            if field in config and (not isinstance(config[field], str) or not config[field]):
                raise ValueError(f"{field} must be a non-empty string")

        if "ssh_username" in config:
            ssh_username = config["ssh_username"]
            if not isinstance(ssh_username, str):
                raise ValueError("ssh_username must be a string")
            if not re.match(SSH_USERNAME_PATTERN, ssh_username):
                raise ValueError(
                    f"Invalid ssh_username '{ssh_username}'. "
                    f"Must start with lowercase letter or underscore, "
                    f"contain only lowercase letters, numbers, underscores, "
                    f"and hyphens, and be 1-32 characters long."
                )
