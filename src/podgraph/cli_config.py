"""
Configuration management for podgraph.

Settings come from dataclass defaults, then the first config file found in
the standard locations (YAML, JSON or TOML), then ``PODGRAPH_*`` environment
variables.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml
import yaml
from rich.console import Console

console = Console(stderr=True)


@dataclass
class AnalyzerConfig:
    """Lock-file analysis configuration."""

    package_type: str = "Pod"
    lockfile_names: List[str] = field(default_factory=lambda: ["Podfile.lock"])
    max_dependency_depth: int = 256
    specs_dir: Optional[str] = None


@dataclass
class CurationConfig:
    """Locations of externally authored curations and package configurations."""

    curation_paths: List[str] = field(default_factory=list)
    package_configuration_paths: List[str] = field(default_factory=list)


@dataclass
class SecurityConfig:
    """Input validation limits."""

    max_file_size_mb: int = 10
    allowed_file_extensions: List[str] = field(
        default_factory=lambda: [".lock", ".yml", ".yaml", ".json", ".toml"]
    )

    @property
    def max_file_size_bytes(self) -> int:
        """Convert MB to bytes for internal use."""
        return self.max_file_size_mb * 1024 * 1024


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    enable_json: bool = True
    enable_sensitive_data_masking: bool = True


@dataclass
class PodgraphConfig:
    """Main configuration containing all subsections."""

    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    curations: CurationConfig = field(default_factory=CurationConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Global configuration instance
_global_config: Optional[PodgraphConfig] = None

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_config_values(config: PodgraphConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if not config.analyzer.package_type.strip():
        errors.append("analyzer.package_type must not be blank")
    if config.analyzer.max_dependency_depth <= 0:
        errors.append("analyzer.max_dependency_depth must be positive")
    if not config.analyzer.lockfile_names:
        errors.append("analyzer.lockfile_names must not be empty")

    if config.security.max_file_size_mb <= 0:
        errors.append("security.max_file_size_mb must be positive")
    for extension in config.security.allowed_file_extensions:
        if not extension.startswith("."):
            errors.append(f"security.allowed_file_extensions entry '{extension}' must start with '.'")

    if config.logging.log_level.upper() not in _VALID_LOG_LEVELS:
        errors.append(f"logging.log_level must be one of {sorted(_VALID_LOG_LEVELS)}")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from file."""
    if not config_path.exists():
        return None

    try:
        suffix = config_path.suffix.lower()
        with open(config_path, encoding="utf-8") as f:
            if suffix in [".yaml", ".yml"]:
                return yaml.safe_load(f)
            elif suffix == ".json":
                return json.load(f)
            elif suffix == ".toml":
                return toml.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"⚠️  Error loading config from {config_path}: {e}", style="yellow")

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".podgraph.yaml",
        Path.cwd() / ".podgraph.yml",
        Path.cwd() / ".podgraph.json",
        Path.cwd() / ".podgraph.toml",
        Path.home() / ".config" / "podgraph" / "config.yaml",
        Path.home() / ".config" / "podgraph" / "config.json",
        Path.home() / ".config" / "podgraph" / "config.toml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: PodgraphConfig) -> None:
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

    def get_env_paths(key: str) -> List[str]:
        value = os.environ.get(key, "")
        return [part for part in value.split(os.pathsep) if part]

    if package_type := os.environ.get("PODGRAPH_PACKAGE_TYPE"):
        config.analyzer.package_type = package_type
    if max_depth := get_env_int("PODGRAPH_MAX_DEPENDENCY_DEPTH"):
        config.analyzer.max_dependency_depth = max_depth
    if specs_dir := os.environ.get("PODGRAPH_SPECS_DIR"):
        config.analyzer.specs_dir = specs_dir

    if curation_paths := get_env_paths("PODGRAPH_CURATION_PATHS"):
        config.curations.curation_paths = curation_paths
    if configuration_paths := get_env_paths("PODGRAPH_PACKAGE_CONFIGURATION_PATHS"):
        config.curations.package_configuration_paths = configuration_paths

    if max_file_size := get_env_int("PODGRAPH_MAX_FILE_SIZE_MB"):
        config.security.max_file_size_mb = max_file_size

    if log_level := os.environ.get("PODGRAPH_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()
    config.logging.enable_json = get_env_bool("PODGRAPH_LOG_JSON", config.logging.enable_json)


def apply_config_section(config: Any, section_data: Dict[str, Any], section_name: str) -> None:
    """Apply configuration from dictionary to config section."""
    if not isinstance(section_data, dict):
        console.print(f"⚠️  Config section {section_name} must be a mapping", style="yellow")
        return

    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(f"⚠️  Unknown config key in {section_name}: {key}", style="yellow")


def build_config(file_config: Optional[Dict[str, Any]] = None) -> PodgraphConfig:
    """Build a configuration from parsed file content plus the environment."""
    config = PodgraphConfig()

    if file_config:
        for section_name in ["analyzer", "curations", "security", "logging"]:
            if section_name in file_config:
                apply_config_section(
                    getattr(config, section_name), file_config[section_name], section_name
                )

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        _restore_invalid_defaults(config)

    return config


def _restore_invalid_defaults(config: PodgraphConfig) -> None:
    defaults = PodgraphConfig()
    if not config.analyzer.package_type.strip():
        config.analyzer.package_type = defaults.analyzer.package_type
    if config.analyzer.max_dependency_depth <= 0:
        config.analyzer.max_dependency_depth = defaults.analyzer.max_dependency_depth
    if not config.analyzer.lockfile_names:
        config.analyzer.lockfile_names = defaults.analyzer.lockfile_names
    if config.security.max_file_size_mb <= 0:
        config.security.max_file_size_mb = defaults.security.max_file_size_mb
    if config.logging.log_level.upper() not in _VALID_LOG_LEVELS:
        config.logging.log_level = defaults.logging.log_level


def load_config() -> PodgraphConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    file_config = None
    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)

    _global_config = build_config(file_config)
    return _global_config


def get_config() -> PodgraphConfig:
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
    """Generate a sample YAML configuration."""
    sample_config = {
        "analyzer": {
            "package_type": "Pod",
            "lockfile_names": ["Podfile.lock"],
            "max_dependency_depth": 256,
            "specs_dir": "specs",
        },
        "curations": {
            "curation_paths": ["curations.yml"],
            "package_configuration_paths": ["package-configurations"],
        },
        "security": {
            "max_file_size_mb": 10,
            "allowed_file_extensions": [".lock", ".yml", ".yaml", ".json", ".toml"],
        },
        "logging": {
            "log_level": "WARNING",
            "enable_json": True,
            "enable_sensitive_data_masking": True,
        },
    }
    return yaml.safe_dump(sample_config, sort_keys=False)
