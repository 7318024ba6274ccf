from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import tomllib

from .layout import DIRECTIONS, LayoutOptions

CONFIG_FILENAME = "beadgraph.toml"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class SyncConfig:
    debounce_ms: int = 2000
    no_push: bool = True
    storage_path: str = ".beads"
    timeout_s: float | None = None


@dataclass(frozen=True)
class BeadgraphConfig:
    repo_root: Path
    sync: SyncConfig = field(default_factory=SyncConfig)
    layout: LayoutOptions = field(default_factory=LayoutOptions)
    bd_binary: str = "bd"
    log_level: str = "INFO"
    path: Path | None = None


def _table(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigValidationError(f"[{name}] must be a table")
    return value


def _as_int(value: object, *, field: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value.strip())
        else:
            raise ConfigValidationError(f"{field} must be an integer")
    if value < minimum:
        raise ConfigValidationError(f"{field} must be >= {minimum}")
    return value


def _as_number(value: object, *, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigValidationError(f"{field} must be a number")
    return float(value)


def _as_str(value: object, *, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError(f"{field} must be a non-empty string")
    return value.strip()


def _parse_sync(table: Mapping[str, Any]) -> SyncConfig:
    defaults = SyncConfig()
    no_push = table.get("no_push", defaults.no_push)
    if not isinstance(no_push, bool):
        raise ConfigValidationError("[sync].no_push must be a boolean")
    timeout = table.get("timeout_s")
    if timeout is not None:
        timeout = _as_number(timeout, field="[sync].timeout_s")
        if timeout <= 0:
            raise ConfigValidationError("[sync].timeout_s must be > 0")
    return SyncConfig(
        debounce_ms=_as_int(
            table.get("debounce_ms", defaults.debounce_ms), field="[sync].debounce_ms"
        ),
        no_push=no_push,
        storage_path=_as_str(
            table.get("storage_path", defaults.storage_path), field="[sync].storage_path"
        ),
        timeout_s=timeout,
    )


def _parse_layout(table: Mapping[str, Any]) -> LayoutOptions:
    defaults = LayoutOptions()
    direction = str(table.get("direction", defaults.direction)).upper()
    if direction not in DIRECTIONS:
        raise ConfigValidationError(f"[layout].direction must be one of {', '.join(DIRECTIONS)}")
    values = {
        name: _as_number(table.get(name, getattr(defaults, name)), field=f"[layout].{name}")
        for name in ("node_spacing_x", "node_spacing_y", "node_width", "node_height")
    }
    try:
        return LayoutOptions(direction=direction, **values)
    except ValueError as exc:
        raise ConfigValidationError(f"[layout]: {exc}") from exc


def _parse_level(value: object, *, field: str) -> str:
    level = _as_str(value, field=field).upper()
    if level not in _LOG_LEVELS:
        raise ConfigValidationError(f"{field} must be one of {', '.join(_LOG_LEVELS)}")
    return level


def load_config(
    repo_root: Path,
    *,
    env: Mapping[str, str] | None = None,
) -> BeadgraphConfig:
    """Read ``beadgraph.toml`` from ``repo_root`` (optional), then apply env overrides."""
    env = os.environ if env is None else env
    path = repo_root / CONFIG_FILENAME
    data: dict[str, Any] = {}
    if path.exists():
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as exc:
            raise ConfigValidationError(f"{path}: {exc}") from exc

    sync = _parse_sync(_table(data, "sync"))
    layout = _parse_layout(_table(data, "layout"))
    bd_binary = _as_str(_table(data, "tracker").get("binary", "bd"), field="[tracker].binary")
    log_level = _parse_level(_table(data, "log").get("level", "INFO"), field="[log].level")

    if env.get("BEADGRAPH_DEBOUNCE_MS"):
        sync = replace(
            sync,
            debounce_ms=_as_int(env["BEADGRAPH_DEBOUNCE_MS"], field="BEADGRAPH_DEBOUNCE_MS"),
        )
    if env.get("BEADGRAPH_BD_BINARY"):
        bd_binary = env["BEADGRAPH_BD_BINARY"].strip()
    if env.get("BEADGRAPH_LOG_LEVEL"):
        log_level = _parse_level(env["BEADGRAPH_LOG_LEVEL"], field="BEADGRAPH_LOG_LEVEL")

    return BeadgraphConfig(
        repo_root=repo_root,
        sync=sync,
        layout=layout,
        bd_binary=bd_binary,
        log_level=log_level,
        path=path if path.exists() else None,
    )
