import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from .errors import ExportError

CONFIG_ENV_VAR: str = "DB_EXPORT_CONFIG"

DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "connections": "database/connections",
        "logging": "logging/config.toml",
        "key": ".key",
    },
    "export": {
        "batch_size": 500,
        "max_workers": 8,
        "progress_every": 1000,
        "decimal_policy": "strict",
        "bytes_format": "hex",
        "null_text": "",
        "max_buffered_rows": 1000,
    },
}


class Struct(dict):
    """
    A dictionary-like object that allows accessing keys as attributes.
    """

    def __init__(self: "Struct", *args, **kwargs):
        """
        Initializes a new Struct object, converting nested mappings as well.
        """
        super().__init__(*args, **kwargs)

        for key, value in self.items():
            if isinstance(value, dict) and not isinstance(value, Struct):
                self[key] = Struct(value)
            if isinstance(value, list):
                self[key] = [
                    Struct(item) if isinstance(item, dict) else item for item in value
                ]

    def __getattr__(self: "Struct", key: Any):
        """
        Retrieves an item from the Struct as an attribute.
        """
        try:
            return self[key]
        except KeyError:
            raise AttributeError(f"{type(self).__name__} has no attribute {key}!")

    def __setattr__(self: "Struct", key: Any, value: Any):
        """
        Sets an item in the Struct as an attribute.
        """
        if isinstance(value, dict) and not isinstance(value, Struct):
            value = Struct(value)
        self[key] = value


def find_root_dir(markers: list[str], start: Optional[Path] = None) -> Path:
    """
    Find the root directory of a project by searching for specific marker files or directories.

    Walks up the directory tree starting from ``start`` (the current working
    directory by default) and returns the first directory that contains at least
    one of the markers.

    Args:
        markers: File or directory names that identify the project root
            (e.g., ['.git', 'pyproject.toml']).
        start: Directory to start from.

    Returns:
        Path: The first directory found that contains at least one of the markers.

    Raises:
        FileNotFoundError: If none of the markers are found up to the filesystem root.

    Example:
        >>> find_root_dir(['.git', 'pyproject.toml'])
        PosixPath('/home/user/my_project')
    """
    curr_path = Path(start or Path.cwd()).resolve()

    while True:
        if any((curr_path / marker).exists() for marker in markers):
            return curr_path
        if curr_path.parent == curr_path:
            markers_str = ", ".join(markers)
            raise FileNotFoundError(f"No marker found!\nMarkers: {markers_str}")
        curr_path = curr_path.parent


def _merge(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def locate_config(config_path: Optional[Path] = None) -> Path:
    """
    Finds config.toml: explicit path, then $DB_EXPORT_CONFIG, then the project root.
    """
    if config_path is not None:
        return Path(config_path)
    if os.environ.get(CONFIG_ENV_VAR):
        return Path(os.environ[CONFIG_ENV_VAR])
    try:
        root = find_root_dir(["pyproject.toml"])
    except FileNotFoundError:
        root = Path.cwd()
    return root / "config" / "config.toml"


def load_config(config_path: Optional[Path] = None) -> Struct:
    """
    Loads the configuration file merged over the built-in defaults.

    Relative entries under ``[paths]`` are resolved against the directory that
    holds the configuration file. A missing file yields the defaults.

    Returns:
        A Struct object containing the configuration.
    """
    path = locate_config(config_path)

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ExportError(f"Invalid configuration file: {exc}", target=path) from exc

    configurations = Struct(_merge(DEFAULT_CONFIG, data))
    configurations.config_file = path
    configurations.paths = {
        name: path.parent / value for name, value in configurations.paths.items()
    }

    return configurations
