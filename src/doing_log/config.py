"""Configuration loading for doing-log.

Settings come from a .toml or .json file; without one the defaults apply.
Configuration is passed explicitly to the engine, never read from global
state.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .matching import CaseSensitivity
from .models import ARCHIVE_SECTION, DEFAULT_SECTION, LATER_SECTION

# Python 3.11+ has tomllib in stdlib; fall back to tomli for older versions
try:
    import tomllib  # Python 3.11+
except ImportError:
    try:
        import tomli as tomllib  # Python <3.11
    except ImportError:  # pragma: no cover
        tomllib = None


@dataclass
class DoingConfig:
    """Configuration for a doing log."""

    # Base directory for a relative doing_file
    home: Path = field(default_factory=Path.home)
    doing_file: str = ".doing.taskpaper"

    default_section: str = DEFAULT_SECTION
    archive_section: str = ARCHIVE_SECTION
    later_section: str = LATER_SECTION

    # Case policy used when a command does not specify one
    search_case: CaseSensitivity = CaseSensitivity.SMART

    def get_doing_file_path(self) -> Path:
        path = Path(self.doing_file).expanduser()
        if path.is_absolute():
            return path
        return self.home / path


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    if tomllib is None:
        raise ImportError("tomli required for TOML config: pip install tomli")
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def dict_to_config(data: dict[str, Any], home: Path) -> DoingConfig:
    """Convert dictionary to DoingConfig."""
    config = DoingConfig(home=home)

    if "doing_file" in data:
        config.doing_file = data["doing_file"]

    if "sections" in data:
        sections = data["sections"]
        if "default" in sections:
            config.default_section = sections["default"]
        if "archive" in sections:
            config.archive_section = sections["archive"]
        if "later" in sections:
            config.later_section = sections["later"]

    if "search" in data:
        search = data["search"]
        if "case" in search:
            config.search_case = CaseSensitivity.parse(search["case"])

    return config


def find_config_file(directory: Path) -> Optional[Path]:
    """Find configuration file in a directory.

    Search order:
    1. doing_config.toml
    2. doing_config.json
    3. .doing.toml
    4. .doing.json
    """
    candidates = [
        "doing_config.toml",
        "doing_config.json",
        ".doing.toml",
        ".doing.json",
    ]

    for name in candidates:
        path = directory / name
        if path.exists():
            return path

    return None


def load_config(home: Path, config_path: Optional[Path] = None) -> DoingConfig:
    """Load configuration.

    Args:
        home: Directory searched for a config file and base for relative paths
        config_path: Optional explicit path to config file

    Returns:
        DoingConfig instance
    """
    if config_path is None:
        config_path = find_config_file(home)

    if config_path is None:
        # No config file - use defaults
        return DoingConfig(home=home)

    suffix = config_path.suffix.lower()

    if suffix == ".toml":
        return dict_to_config(load_toml_config(config_path), home)

    elif suffix == ".json":
        return dict_to_config(load_json_config(config_path), home)

    else:
        raise ValueError(f"Unsupported config file type: {suffix}")
