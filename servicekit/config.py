"""Layered configuration loaded from JSON and YAML files."""

from __future__ import annotations

import json
import logging
import os
import stat
from collections.abc import Iterator, Mapping
from typing import Any

import yaml

_CONFIG_SUFFIXES = (".json", ".yaml", ".yml")


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or a value is missing."""


def _walk(root: str) -> Iterator[str]:
    """Yield every non-directory path under *root* in lexical order."""
    try:
        info = os.lstat(root)
    except OSError as exc:
        raise ConfigError(f"cannot access {root}: {exc}") from exc
    if not stat.S_ISDIR(info.st_mode):
        yield root
        return
    try:
        names = sorted(os.listdir(root))
    except OSError as exc:
        raise ConfigError(f"cannot list {root}: {exc}") from exc
    for name in names:
        yield from _walk(os.path.join(root, name))


def _read_config_file(path: str) -> dict[str, Any] | None:
    try:
        with open(path, "rb") as handle:
            raw = handle.read()
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc

    if path.endswith(".json"):
        kind = "JSON"
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise ConfigError(f"error parsing JSON file {path}: {exc}") from exc
    else:
        kind = "YAML"
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ConfigError(f"error parsing YAML file {path}: {exc}") from exc

    if data is not None and not isinstance(data, dict):
        raise ConfigError(
            f"error parsing {kind} file {path}: top level is not a mapping"
        )
    return data


def merge_maps(dst: dict[str, Any], src: Mapping[str, Any] | None) -> dict[str, Any]:
    """Recursively merge *src* into *dst*, which is modified and returned."""
    for key, value in (src or {}).items():
        existing = dst.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            dst[key] = merge_maps(existing, value)
        else:
            dst[key] = value
    return dst


def load_and_merge_files(*paths: str) -> dict[str, Any]:
    """Load every JSON or YAML file under the given paths and merge them in order."""
    merged: dict[str, Any] = {}
    for path in paths:
        for file_path in _walk(path):
            if file_path.endswith(_CONFIG_SUFFIXES):
                merged = merge_maps(merged, _read_config_file(file_path))
    return merged


class Config:
    """Configuration values for one environment, drawn from a config map and a vault."""

    def __init__(
        self,
        env: str,
        config_map_path: str,
        vault_path: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self.env = env
        self.config_map_path = config_map_path
        self.vault_path = vault_path
        log = logger or logging.getLogger(__name__)
        try:
            self._data = load_and_merge_files(config_map_path, vault_path)
        except ConfigError as exc:
            log.error("error reading and merging files: %s", exc)
            self._data = {}

    def get(self, key: str) -> Any:
        """Return the value of *key* for this environment, or from the top level."""
        if self.env not in self._data:
            raise ConfigError(f"environment '{self.env}' not found")
        env_values = self._data[self.env]
        if isinstance(env_values, Mapping) and key in env_values:
            return env_values[key]
        # Some sources carry no environment level; look the key up directly.
        if key in self._data:
            return self._data[key]
        raise ConfigError(f"key '{key}' not found in environment '{self.env}'")