#!/usr/bin/env python3
"""
lanup Configuration Models and Validation

This module contains the Pydantic configuration models and the loading logic
for lanup. Two files are involved:

* ``~/.lanup/config.yaml`` - global settings (logging, watcher interval).
  Created with defaults on first use.
* ``.lanup.yaml`` - per-project settings: the URL templates to expose, the
  env file to generate, and which service providers to query.

**Configuration Flow:**
    1. Load YAML from disk
    2. Apply environment variable overrides
    3. Build Pydantic models (type conversion and field validation)
    4. Hand the validated objects to the components that need them

Configuration objects are built once by the CLI and passed explicitly into
each component; nothing in lanup reads configuration from module globals.

Classes:
    GlobalConfig: Logging and watcher settings
    AutoDetectConfig: Dynamic provider switches
    ProjectConfig: Per-project variables and output file
    ConfigurationValidator: Loading, saving and validation

License: MIT
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .env_manager import is_valid_key
from .errors import InvalidConfigError, LanupError, ErrorCode
from .utils import get_logger

DEFAULT_PROJECT_CONFIG_PATH = ".lanup.yaml"
DEFAULT_OUTPUT_PATH = ".env.local"


def default_global_dir() -> Path:
    return Path.home() / ".lanup"


def default_global_config_path() -> Path:
    return default_global_dir() / "config.yaml"


# ==================== GLOBAL CONFIGURATION ====================

class GlobalConfig(BaseModel):
    """
    Global lanup settings shared by every project on this machine.

    Attributes:
        log_path (str): Log file location. ``~`` is expanded.
        log_level (str): debug, info, warn or error.
        default_port (int): Port suggested for new services (1-65535).
        check_interval (int): Watcher poll interval in seconds (at least 1).

    Example:
        ```python
        config = GlobalConfig(log_level="debug", check_interval=2)
        ```
    """
    model_config = ConfigDict(
        extra='ignore',
        str_strip_whitespace=True
    )

    log_path: str = Field(default_factory=lambda: str(default_global_dir() / "logs" / "lanup.log"))
    log_level: str = Field(default="info")
    default_port: int = Field(default=8080, ge=1, le=65535)
    check_interval: int = Field(default=5, ge=1, description="Watcher poll interval in seconds")

    # noinspection PyDecorator
    @field_validator('log_path')
    @classmethod
    def validate_log_path(cls, v: str) -> str:
        if not v:
            raise ValueError("log_path cannot be empty")
        return str(Path(v).expanduser())

    # noinspection PyDecorator
    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ['debug', 'info', 'warn', 'error']
        level = v.lower()
        if level == 'warning':
            level = 'warn'
        if level not in valid_levels:
            raise ValueError(f"invalid log_level: {v} (must be debug, info, warn, or error)")
        return level


# ==================== PROJECT CONFIGURATION ====================

class AutoDetectConfig(BaseModel):
    """
    Switches for the dynamic variable providers.

    Attributes:
        docker (bool): Add ``DOCKER_<NAME>_PORT`` variables for running containers.
        supabase (bool): Add ``SUPABASE_<SERVICE>_PORT`` variables from ``supabase status``.
    """
    model_config = ConfigDict(extra='ignore')

    docker: bool = Field(default=False)
    supabase: bool = Field(default=False)


class ProjectConfig(BaseModel):
    """
    Per-project configuration read from ``.lanup.yaml``.

    Attributes:
        vars (Dict[str, str]): Variable name to URL template. Templates may
            reference ``localhost`` or ``127.0.0.1``.
        output (str): Env file to generate.
        auto_detect (AutoDetectConfig): Dynamic provider switches.

    Example:
        ```yaml
        vars:
          API_URL: http://localhost:8000
          SUPABASE_URL: http://localhost:54321
        output: .env.local
        auto_detect:
          docker: true
          supabase: false
        ```
    """
    model_config = ConfigDict(
        extra='ignore',
        str_strip_whitespace=True
    )

    vars: Dict[str, str] = Field(default_factory=dict)
    output: str = Field(default=DEFAULT_OUTPUT_PATH)
    auto_detect: AutoDetectConfig = Field(default_factory=AutoDetectConfig)

    # noinspection PyDecorator
    @field_validator('vars', mode='before')
    @classmethod
    def validate_vars(cls, v: Any) -> Dict[str, str]:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("vars must be a mapping of variable names to values")

        result = {}
        for key, value in v.items():
            key = str(key).strip() if key is not None else ""
            if not key:
                raise ValueError("variable key cannot be empty")
            if not is_valid_key(key):
                raise ValueError(f"invalid variable name {key!r}: use letters, digits, '_', '.' or '-', "
                                 f"not starting with a digit")
            if value is None or str(value) == "":
                raise ValueError(f"variable {key} has empty value")
            value = str(value)
            if "\n" in value or "\r" in value:
                raise ValueError(f"variable {key} value must be a single line")
            result[key] = value
        return result

    # noinspection PyDecorator
    @field_validator('output')
    @classmethod
    def validate_output(cls, v: str) -> str:
        if not v:
            raise ValueError("output file path cannot be empty")
        return v


def get_default_project_config() -> ProjectConfig:
    """Return the project configuration written by ``lanup init``."""
    return ProjectConfig(
        vars={
            "SUPABASE_URL": "http://localhost:54321",
            "SUPABASE_ANON_KEY": "your-anon-key",
            "API_URL": "http://localhost:8000",
            "DASHBOARD_URL": "http://localhost:3000",
        },
        output=DEFAULT_OUTPUT_PATH,
        auto_detect=AutoDetectConfig(docker=True, supabase=True),
    )


# ==================== CONFIGURATION VALIDATION ====================

class ConfigurationValidator:
    """
    Loads, validates and saves lanup configuration files.

    **Environment Variable Overrides:**
        - LANUP_LOG_LEVEL -> global log_level
        - LANUP_LOG_PATH -> global log_path
        - LANUP_CHECK_INTERVAL -> global check_interval
        - LANUP_OUTPUT -> project output

    **Error Handling Strategy:**
        Pydantic ``ValidationError`` and YAML errors are converted into
        ``InvalidConfigError`` with every failing field listed, so the CLI can
        print one message and exit with the configuration exit code.

    Example:
        ```python
        validator = ConfigurationValidator()
        global_config = validator.load_global_config()
        project_config = validator.load_project_config(".lanup.yaml")
        ```
    """

    GLOBAL_ENV_MAPPINGS = {
        'LANUP_LOG_LEVEL': 'log_level',
        'LANUP_LOG_PATH': 'log_path',
        'LANUP_CHECK_INTERVAL': 'check_interval',
    }

    PROJECT_ENV_MAPPINGS = {
        'LANUP_OUTPUT': 'output',
    }

    def __init__(self):
        self.logger = get_logger("lanup.config")
        self.errors: List[str] = []

    def load_global_config(self, config_path: Optional[str] = None) -> GlobalConfig:
        """
        Load the global configuration, creating it with defaults if missing.

        Args:
            config_path (Optional[str]): Override for ``~/.lanup/config.yaml``.

        Returns:
            GlobalConfig: Validated global configuration

        Raises:
            InvalidConfigError: If the file cannot be parsed or validated
        """
        path = Path(config_path).expanduser() if config_path else default_global_config_path()

        if not path.exists():
            self.logger.info(f"Global configuration not found, creating defaults at {path}")
            config = GlobalConfig()
            self._save_global_config(path, config)
            config_data: Dict[str, Any] = config.model_dump()
        else:
            config_data = self._load_yaml(path)

        self._apply_env_overrides(config_data, self.GLOBAL_ENV_MAPPINGS)
        return self._build(GlobalConfig, config_data, path)

    def load_project_config(self, config_path: Optional[str] = None) -> ProjectConfig:
        """
        Load and validate the project configuration.

        Args:
            config_path (Optional[str]): Path to ``.lanup.yaml``.

        Returns:
            ProjectConfig: Validated project configuration

        Raises:
            InvalidConfigError: If the file is missing, unparsable or invalid
        """
        path = Path(config_path or DEFAULT_PROJECT_CONFIG_PATH)

        if not path.exists():
            raise InvalidConfigError(
                f"project config file not found: {path} (run 'lanup init' to create one)")

        self.logger.info(f"Loading project configuration from {path}")
        config_data = self._load_yaml(path)
        self._apply_env_overrides(config_data, self.PROJECT_ENV_MAPPINGS)
        return self._build(ProjectConfig, config_data, path)

    def save_project_config(self, config: ProjectConfig, config_path: Optional[str] = None) -> Path:
        """
        Write a project configuration as YAML.

        Args:
            config (ProjectConfig): Configuration to save
            config_path (Optional[str]): Destination, ``.lanup.yaml`` by default

        Returns:
            Path: The written path

        Raises:
            LanupError: If the file cannot be written
        """
        path = Path(config_path or DEFAULT_PROJECT_CONFIG_PATH)
        data = yaml.safe_dump(config.model_dump(), sort_keys=False, default_flow_style=False)
        try:
            path.write_text(data, encoding='utf-8')
        except OSError as e:
            raise LanupError("Failed to write config file", cause=e, code=ErrorCode.PERMISSION_DENIED) from e

        self.logger.info(f"Project configuration written to {path}")
        return path

    def _save_global_config(self, path: Path, config: GlobalConfig) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            (path.parent / "logs").mkdir(parents=True, exist_ok=True)
            path.write_text(yaml.safe_dump(config.model_dump(), sort_keys=False), encoding='utf-8')
            os.chmod(path, 0o600)
        except OSError as e:
            raise InvalidConfigError("Failed to create default global configuration", cause=e) from e

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"Failed to parse config file {path}", cause=e) from e
        except OSError as e:
            raise InvalidConfigError(f"Failed to read config file {path}", cause=e) from e

        if not isinstance(data, dict):
            raise InvalidConfigError(f"Config file {path} must contain a mapping at the top level")
        return data

    def _apply_env_overrides(self, config_data: Dict[str, Any], mappings: Dict[str, str]) -> None:
        for env_var, field_name in mappings.items():
            value = os.environ.get(env_var)
            if value:
                config_data[field_name] = value
                self.logger.debug(f"Applied environment override: {env_var}")

    def _build(self, model, config_data: Dict[str, Any], path: Path):
        try:
            return model(**config_data)
        except ValidationError as e:
            self.errors = []
            for error in e.errors():
                field_path = " -> ".join(str(x) for x in error['loc'])
                self.errors.append(f"{field_path}: {error['msg']}")
                self.logger.error(f"  {field_path}: {error['msg']}")
            raise InvalidConfigError(
                f"Invalid configuration in {path}: " + "; ".join(self.errors)) from e
