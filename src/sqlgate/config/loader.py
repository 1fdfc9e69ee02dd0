"""Config loader for sqlgate settings.

Search order: ./sqlgate.toml -> platform config -> ~/.sqlgate/config.toml
Uses stdlib tomllib (Python 3.11+).
"""

from __future__ import annotations

import os
import platform
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from sqlgate.config.settings import Settings

_HOME_CONFIG_PATH = Path.home() / ".sqlgate" / "config.toml"


def get_platform_config_path() -> Path:
    """Return the platform-specific config.toml path."""
    system = platform.system().lower()
    if system == "darwin":
        return Path.home() / "Library" / "Application Support" / "sqlgate" / "config.toml"
    if system == "windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "sqlgate" / "config.toml"
        return Path.home() / "AppData" / "Roaming" / "sqlgate" / "config.toml"

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "sqlgate" / "config.toml"
    return Path.home() / ".config" / "sqlgate" / "config.toml"


def get_config_search_paths() -> list[Path]:
    """Return config search paths in priority order."""
    return [
        Path("./sqlgate.toml"),
        get_platform_config_path(),
        _HOME_CONFIG_PATH,
    ]


def _find_config_file() -> Path | None:
    for path in get_config_search_paths():
        if path.exists():
            return path
    return None


def _parse_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as f:
        return tomllib.load(f)


def resolve_config_path(config_path: Path | None = None) -> Path:
    """Resolve the config path used for display or creation."""
    if config_path:
        return config_path
    return _find_config_file() or get_platform_config_path()


def _apply_overrides(settings: Settings, overrides: Mapping[str, Any]) -> Settings:
    if overrides.get("host") is not None:
        settings.server.host = str(overrides["host"])
    if overrides.get("port") is not None:
        settings.server.port = int(overrides["port"])
    if overrides.get("agent_executable") is not None:
        settings.agent.executable = str(overrides["agent_executable"])
    if overrides.get("work_dir") is not None:
        settings.agent.work_dir = Path(overrides["work_dir"])
    return settings


def load_settings(
    config_path: Path | None = None, *, cli_overrides: Mapping[str, Any] | None = None
) -> Settings:
    """Load application settings from a TOML file.

    Args:
        config_path: Explicit path to config file. If None, searches default locations.
        cli_overrides: Optional CLI overrides applied last.

    Raises:
        FileNotFoundError: An explicit config_path was given but does not exist.
        RuntimeError: The config file could not be parsed.
    """
    if config_path:
        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found at explicitly provided path: {config_path}. "
                "Ensure the file exists or omit the argument to use default search paths."
            )
        path: Path = config_path
    else:
        found_path = _find_config_file()
        if found_path is None:
            settings = Settings()
            return _apply_overrides(settings, cli_overrides) if cli_overrides else settings
        path = found_path

    try:
        data = _parse_toml(path)
    except Exception as e:
        raise RuntimeError(f"Failed to parse configuration file at {path}: {e}") from e

    agent_data = dict(data.get("agent", {}))
    if "work_dir" in agent_data:
        work_dir = Path(agent_data["work_dir"]).expanduser()
        # Resolve relative paths against the config file location
        if not work_dir.is_absolute():
            work_dir = path.parent / work_dir
        agent_data["work_dir"] = work_dir

    settings_data: dict[str, Any] = {
        "server": data.get("server", {}),
        "mcp": data.get("mcp", {}),
        "agent": agent_data,
    }
    if "cors_allow_origins" in data:
        settings_data["cors_allow_origins"] = data["cors_allow_origins"]

    settings = Settings.model_validate(settings_data)
    if cli_overrides:
        settings = _apply_overrides(settings, cli_overrides)
    return settings
