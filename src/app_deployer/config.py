"""Configuration loading utilities for app-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")


@dataclass
class SessionConfig:
    """Session engine policy."""

    benign_exit_codes: List[int] = field(default_factory=list)  # treated as success
    max_deferrals: int = 3
    closure_mode: str = "Countdown"        # Countdown | CloseImmediate | PersistUntilManual
    closure_countdown_seconds: int = 60
    default_required_disk_mb: int = 0      # used when the catalog does not say


@dataclass
class InstallerConfig:
    """Settings for the msiexec invoker."""

    msiexec_path: str = "msiexec.exe"
    working_dir: Optional[str] = None      # defaults to the catalog's directory
    timeout: Optional[int] = None          # seconds per installer run
    default_arguments: List[str] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Where session logs go."""

    log_dir: Optional[str] = None         # defaults to .app-deployer/logs
    level: str = "INFO"
    msi_logs: bool = True                  # pass /L*v to msiexec


@dataclass
class InteractionConfig:
    """Configuration for user interaction."""

    mode: str = "cli"  # "cli" | "auto"


@dataclass
class AppConfig:
    """Top-level configuration."""

    session: SessionConfig = field(default_factory=SessionConfig)
    installer: InstallerConfig = field(default_factory=InstallerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    interaction: InteractionConfig = field(default_factory=InteractionConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        sections = {}
        for name, section_cls in (
            ("session", SessionConfig),
            ("installer", InstallerConfig),
            ("logging", LoggingConfig),
            ("interaction", InteractionConfig),
        ):
            section_payload = payload.get(name, {}) or {}
            # keys starting with "_" are comments
            section_payload = {k: v for k, v in section_payload.items() if not k.startswith("_")}
            unknown = set(section_payload) - set(section_cls.__dataclass_fields__)
            if unknown:
                raise ConfigurationError(
                    f"Unknown {name} setting(s): {', '.join(sorted(unknown))}"
                )
            sections[name] = section_cls(**{**section_cls().__dict__, **section_payload})
        return cls(**sections)


def _apply_env(config: AppConfig) -> AppConfig:
    """Environment variables take priority over the config file."""
    env_log_dir = os.getenv("APP_DEPLOYER_LOG_DIR")
    if env_log_dir:
        config.logging.log_dir = env_log_dir

    env_msiexec = os.getenv("APP_DEPLOYER_MSIEXEC_PATH")
    if env_msiexec:
        config.installer.msiexec_path = env_msiexec

    try:
        env_deferrals = os.getenv("APP_DEPLOYER_MAX_DEFERRALS")
        if env_deferrals:
            config.session.max_deferrals = int(env_deferrals)

        env_disk = os.getenv("APP_DEPLOYER_REQUIRED_DISK_MB")
        if env_disk:
            config.session.default_required_disk_mb = int(env_disk)

        env_benign = os.getenv("APP_DEPLOYER_BENIGN_EXIT_CODES")
        if env_benign:
            config.session.benign_exit_codes = [
                int(code) for code in env_benign.replace(";", ",").split(",") if code.strip()
            ]
    except ValueError as exc:
        raise ConfigurationError(f"Invalid numeric environment override: {exc}") from exc
    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    Falls back to built-in defaults when no file is found at the default
    location. A `path` that does not exist raises ``FileNotFoundError``;
    a file that is not valid JSON raises ``ConfigurationError``.

    Environment variables (higher priority than config file):
    - APP_DEPLOYER_LOG_DIR: directory for text and JSON session logs
    - APP_DEPLOYER_MSIEXEC_PATH: msiexec executable
    - APP_DEPLOYER_MAX_DEFERRALS: deferrals allowed before the deployment is declined
    - APP_DEPLOYER_REQUIRED_DISK_MB: free space required when the catalog does not say
    - APP_DEPLOYER_BENIGN_EXIT_CODES: comma separated installer codes treated as success
    """
    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Could not find configuration file: {path}")

    candidate = Path(path) if path else _DEFAULT_CONFIG_PATH
    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            try:
                data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"Config {candidate} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config {candidate} must contain a JSON object")
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    return _apply_env(config)
