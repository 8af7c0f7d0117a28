"""Configuration management for posterkeep."""

from __future__ import annotations

import configparser
import os
import re
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from posterkeep.errors import ConfigError

CONFIG_FILENAME = "posterkeep.ini"


class PlexConfig(BaseModel):
    """Plex server configuration."""

    url: str | None = None
    token: str | None = None
    connect_timeout: int = 10
    request_timeout: int = 60
    import_batch_size: int = 25
    remove_overlay_label: bool = False  # Strip the Overlay label after sending a poster


class AutoImportConfig(BaseModel):
    """Scheduled import configuration."""

    enabled: bool = True
    schedule: str = "24h"  # <N><unit>, unit one of m/h/d/w
    import_movies: bool = True
    import_shows: bool = True
    import_seasons: bool = True
    import_collections: bool = True
    excluded_libraries: list[str] = Field(default_factory=list)


class PathsConfig(BaseModel):
    """Where posters and sidecar state files live.

    Relative paths are resolved against the directory of the config file
    (or the working directory when running without one).
    """

    poster_dir: str = "posters"
    data_dir: str = "data"


class AppConfig(BaseModel):
    """Application configuration."""

    plex: PlexConfig = Field(default_factory=PlexConfig)
    auto_import: AutoImportConfig = Field(default_factory=AutoImportConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)


# Global config instance
_config: AppConfig | None = None
_config_path: Path | None = None  # Track where config was loaded from


def get_exe_directory() -> Path:
    """Get the directory containing the executable (or script).

    Handles both normal Python execution and frozen bundles.
    """
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    # Not __file__, which is inside the package
    return Path.cwd()


def get_config_paths() -> list[Path]:
    """Get list of config file paths to search, in priority order.

    Search order:
    1. Exe directory
    2. Current working directory
    3. User home directory (~/.posterkeep/)
    4. Legacy YAML files in the current and home directories

    Returns:
        List of paths to check for config files.
    """
    paths = []

    exe_dir = get_exe_directory()
    home_dir = Path.home() / ".posterkeep"

    paths.append(exe_dir / CONFIG_FILENAME)

    cwd = Path.cwd()
    if cwd != exe_dir:  # Avoid duplicates
        paths.append(cwd / CONFIG_FILENAME)

    paths.append(home_dir / CONFIG_FILENAME)

    paths.append(cwd / "config.yaml")
    paths.append(cwd / "config.yml")
    paths.append(home_dir / "config.yaml")

    return paths


def find_config_file() -> Path | None:
    """Find the first existing config file."""
    for path in get_config_paths():
        if path.exists():
            return path
    return None


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values.

    Supports ${VAR} and $VAR syntax.
    """
    if isinstance(value, str):
        pattern = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")

        def replace(match: re.Match[str]) -> str:
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, "")

        return pattern.sub(replace, value)
    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


def _parse_bool(value: str) -> bool:
    """Parse a boolean value from a string (true/false/yes/no/1/0/on/off)."""
    return value.strip().lower() in ("true", "yes", "1", "on")


def _parse_list(value: str) -> list[str]:
    """Parse a comma-separated list, dropping empty items."""
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _read_section(
    parser: configparser.ConfigParser,
    section: str,
    bools: tuple[str, ...] = (),
    ints: tuple[str, ...] = (),
    strings: tuple[str, ...] = (),
    lists: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Read typed options from one INI section, skipping missing or invalid ones."""
    if not parser.has_section(section):
        return {}

    values: dict[str, Any] = {}
    for key in bools:
        if parser.has_option(section, key):
            values[key] = _parse_bool(parser.get(section, key))
    for key in ints:
        if parser.has_option(section, key):
            try:
                values[key] = int(parser.get(section, key))
            except ValueError:
                pass  # Keep default
    for key in strings:
        value = parser.get(section, key, fallback="").strip()
        if value:
            values[key] = value
    for key in lists:
        if parser.has_option(section, key):
            values[key] = _parse_list(parser.get(section, key))
    return values


def _load_ini_config(path: Path) -> dict[str, Any]:
    """Load configuration from an INI file into the AppConfig shape."""
    parser = configparser.ConfigParser(interpolation=None)
    parser.read(path, encoding="utf-8")

    config: dict[str, Any] = {}

    plex = _read_section(
        parser,
        "plex",
        bools=("remove_overlay_label",),
        ints=("connect_timeout", "request_timeout", "import_batch_size"),
        strings=("url", "token"),
    )
    if plex:
        config["plex"] = plex

    auto_import = _read_section(
        parser,
        "auto_import",
        bools=("enabled", "import_movies", "import_shows", "import_seasons", "import_collections"),
        strings=("schedule",),
        lists=("excluded_libraries",),
    )
    if auto_import:
        config["auto_import"] = auto_import

    paths = _read_section(parser, "paths", strings=("poster_dir", "data_dir"))
    if paths:
        config["paths"] = paths

    return config


def _load_yaml_config(path: Path) -> dict[str, Any]:
    """Load configuration from a YAML file (legacy format)."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from file.

    Supports both INI (.ini/.cfg) and YAML (.yaml/.yml) formats.
    Environment variables are expanded in all values using ${VAR} syntax.

    Args:
        path: Explicit path to config file. If None, searches default locations.

    Returns:
        Loaded configuration with environment variables expanded.

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values.
    """
    global _config, _config_path

    if path is None:
        path = find_config_file()

    if path is None or not path.exists():
        _config = AppConfig()
        _config_path = None
        return _config

    try:
        if path.suffix in (".ini", ".cfg"):
            raw_config = _load_ini_config(path)
        else:
            raw_config = _load_yaml_config(path)
        _config = AppConfig.model_validate(_expand_env_vars(raw_config))
    except (configparser.Error, yaml.YAMLError, ValidationError, OSError) as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    _config_path = path
    return _config


def get_config_path() -> Path | None:
    """Get the path to the currently loaded config file, or None if using defaults."""
    return _config_path


def get_config() -> AppConfig:
    """Get the current configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Reset the cached configuration.

    Useful for testing or when config file changes.
    """
    global _config, _config_path
    _config = None
    _config_path = None


def _resolve(path_value: str) -> Path:
    path = Path(path_value).expanduser()
    if path.is_absolute():
        return path
    base = _config_path.parent if _config_path is not None else Path.cwd()
    return base / path


def get_poster_dir(config: AppConfig | None = None) -> Path:
    """Get the root poster directory."""
    return _resolve((config or get_config()).paths.poster_dir)


def get_data_dir(config: AppConfig | None = None) -> Path:
    """Get the directory holding the sidecar state files."""
    return _resolve((config or get_config()).paths.data_dir)


def validate_config(config: AppConfig | None = None) -> None:
    """Check that the configuration is complete enough to talk to Plex.

    Plex URL and token fall back to the PLEX_URL and PLEX_TOKEN
    environment variables, as the Plex client does.

    Raises:
        ConfigError: Naming every missing or invalid setting.
    """
    cfg = config or get_config()
    problems = []

    if not (cfg.plex.url or os.environ.get("PLEX_URL")):
        problems.append("plex.url is not set")
    if not (cfg.plex.token or os.environ.get("PLEX_TOKEN")):
        problems.append("plex.token is not set")
    if cfg.plex.connect_timeout <= 0 or cfg.plex.request_timeout <= 0:
        problems.append("plex timeouts must be positive")
    if cfg.plex.import_batch_size <= 0:
        problems.append("plex.import_batch_size must be positive")

    if problems:
        raise ConfigError("Incomplete configuration: " + "; ".join(problems))


def get_config_dir() -> Path:
    """Get the user config directory, creating it if needed."""
    config_dir = Path.home() / ".posterkeep"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def save_default_config(
    path: Path | None = None,
    plex_url: str = "",
    plex_token: str = "",
) -> Path:
    """Save a default INI config file.

    Args:
        path: Where to save. Defaults to ./posterkeep.ini.
        plex_url: Plex server URL (optional, can use env var).
        plex_token: Plex token (optional, can use env var).

    Returns:
        Path to saved config file.
    """
    if path is None:
        path = Path.cwd() / CONFIG_FILENAME

    plex_url_value = plex_url or "${PLEX_URL}"
    plex_token_value = plex_token or "${PLEX_TOKEN}"

    default_config = f"""\
# posterkeep configuration
# You can use environment variables with ${{VAR}} syntax

[plex]
# Plex server URL (e.g., http://192.168.1.100:32400)
url = {plex_url_value}
# X-Plex-Token from Plex settings
token = {plex_token_value}
# Seconds to wait for a connection / for a whole request
connect_timeout = 10
request_timeout = 60
# Items fetched from Plex per batch
import_batch_size = 25
# Remove the Overlay label when sending a poster to Plex
remove_overlay_label = false

[auto_import]
enabled = true
# How often the scheduled import runs: <number><m|h|d|w>
schedule = 24h
import_movies = true
import_shows = true
import_seasons = true
import_collections = true
# Library names to leave alone (comma-separated)
excluded_libraries =

[paths]
# Relative paths are resolved against this file's directory
poster_dir = posters
data_dir = data
"""

    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        f.write(default_config)

    return path
