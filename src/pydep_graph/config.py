"""
Configuration management for pydep-graph.

Settings are read from a project or user config file (JSON or YAML) and
then overridden from PYDEP_GRAPH_* environment variables.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

from .dependency import REQUESTED_BY_MAX_LENGTH
from .error_handling import DEFAULT_LOG_FORMAT

console = Console(stderr=True)


@dataclass
class ResolverConfig:
    """Dependency graph and provenance settings."""

    max_requested_by_chains: int = REQUESTED_BY_MAX_LENGTH
    # pipenv releases from this version on only report cache hits reliably
    # on the buffered error stream
    pipenv_buffered_stderr_min_version: str = "2023.7.23"
    pipenv_verbose_flag: str = "-v"
    reject_malformed_entries: bool = False


@dataclass
class CommandConfig:
    """External command settings."""

    python_executable: str = "python"
    # None blocks until the command exits
    timeout_seconds: Optional[float] = None
    extra_env: Dict[str, str] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    log_format: str = DEFAULT_LOG_FORMAT
    # Redacts credentials from errors reported through the error handler
    enable_sensitive_data_masking: bool = True


@dataclass
class ComprehensiveConfig:
    """Main configuration containing all subsections."""

    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    command: CommandConfig = field(default_factory=CommandConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_global_config: Optional[ComprehensiveConfig] = None

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if config.resolver.max_requested_by_chains <= 0:
        errors.append("resolver.max_requested_by_chains must be positive")
    if not config.resolver.pipenv_buffered_stderr_min_version.strip():
        errors.append("resolver.pipenv_buffered_stderr_min_version must not be empty")

    if not config.command.python_executable.strip():
        errors.append("command.python_executable must not be empty")
    if config.command.timeout_seconds is not None and config.command.timeout_seconds <= 0:
        errors.append("command.timeout_seconds must be positive when set")

    if config.logging.log_level.upper() not in _VALID_LOG_LEVELS:
        errors.append(f"logging.log_level must be one of {sorted(_VALID_LOG_LEVELS)}")
    if "%(message)s" not in config.logging.log_format:
        errors.append("logging.log_format must contain %(message)s")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in [".yaml", ".yml"]:
                return yaml.safe_load(f)
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"⚠️  Error loading config from {config_path}: {e}", style="yellow")

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".pydep-graph.json",
        Path.cwd() / ".pydep-graph.yaml",
        Path.cwd() / ".pydep-graph.yml",
        Path.home() / ".config" / "pydep-graph" / "config.json",
        Path.home() / ".config" / "pydep-graph" / "config.yaml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: ComprehensiveConfig) -> None:
    """Load environment variable overrides."""

    def get_env_bool(key: str, default: bool = False) -> bool:
        value = os.environ.get(key, "").lower()
        return value in ["true", "1", "yes", "on"] if value else default

    def get_env_int(key: str) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return None

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return None

    if max_chains := get_env_int("PYDEP_GRAPH_MAX_REQUESTED_BY"):
        config.resolver.max_requested_by_chains = max_chains
    if min_version := os.environ.get("PYDEP_GRAPH_PIPENV_BUFFERED_MIN_VERSION"):
        config.resolver.pipenv_buffered_stderr_min_version = min_version
    config.resolver.reject_malformed_entries = get_env_bool(
        "PYDEP_GRAPH_STRICT", config.resolver.reject_malformed_entries
    )

    if python_executable := os.environ.get("PYDEP_GRAPH_PYTHON"):
        config.command.python_executable = python_executable
    if timeout := get_env_float("PYDEP_GRAPH_TIMEOUT"):
        config.command.timeout_seconds = timeout

    if log_level := os.environ.get("PYDEP_GRAPH_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            if isinstance(getattr(config, key), dict) and isinstance(value, dict):
                getattr(config, key).update(value)
            else:
                setattr(config, key, value)
        else:
            console.print(f"⚠️  Unknown config key in {section_name}: {key}", style="yellow")


def apply_config_data(config: ComprehensiveConfig, file_config: Dict[str, Any]) -> None:
    """Apply every known section of a loaded config file."""
    for section_name in ("resolver", "command", "logging"):
        if section_name in file_config:
            apply_config_section(
                getattr(config, section_name), file_config[section_name], section_name
            )


def load_config() -> ComprehensiveConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    config = ComprehensiveConfig()

    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if file_config:
            apply_config_data(config, file_config)

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values.", style="yellow")
        config = ComprehensiveConfig()

    _global_config = config
    return config


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate sample configuration."""
    return json.dumps(ComprehensiveConfig().to_dict(), indent=2)
