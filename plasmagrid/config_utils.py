"""Helper utilities for loading and normalising configuration inputs."""
from __future__ import annotations

import logging
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError

from .errors import ConfigurationError
from .schema import ServiceConfig, SimulationRun

logger = logging.getLogger(__name__)


def parse_override_value(raw: str) -> Any:
    """Parse a CLI override value into a Python object."""

    text = raw.strip()
    lower = text.lower()
    if lower in {"true", "false"}:
        return lower == "true"
    if lower in {"none", "null"}:
        return None
    try:
        return int(text)
    except ValueError:
        try:
            return float(text)
        except ValueError:
            pass
    if (text.startswith('"') and text.endswith('"')) or (text.startswith("'") and text.endswith("'")):
        return text[1:-1]
    return text


def apply_overrides_dict(payload: Dict[str, Any], overrides: Sequence[str]) -> Dict[str, Any]:
    """Apply dotted-path ``key.sub=value`` overrides to a configuration mapping."""

    if not overrides:
        return payload
    for item in overrides:
        key, sep, value_str = item.partition("=")
        if not sep:
            raise ConfigurationError(f"Invalid override '{item}'; expected path=value")
        parts = [segment for segment in key.strip().split(".") if segment]
        if not parts:
            raise ConfigurationError(f"Invalid override '{item}'; empty path")
        target: Any = payload
        for segment in parts[:-1]:
            if not isinstance(target, dict):
                raise ConfigurationError(f"Cannot traverse into non-mapping for override '{item}' at '{segment}'")
            if segment not in target or target[segment] is None:
                target[segment] = {}
            target = target[segment]
        if not isinstance(target, dict):
            raise ConfigurationError(f"Cannot set override '{item}'; target is not a mapping")
        target[parts[-1]] = parse_override_value(value_str)
    return payload


def _load_yaml_mapping(path: Path) -> Dict[str, Any]:
    from ruamel.yaml import YAML

    yaml = YAML(typ="safe")
    source_path = Path(path).resolve()
    try:
        with source_path.open("r", encoding="utf-8") as fh:
            data = yaml.load(fh)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read {source_path}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source_path}: the YAML root must be a mapping")
    return data


def load_config(path: Optional[Path] = None, overrides: Optional[Sequence[str]] = None) -> ServiceConfig:
    """Load a YAML service configuration into a :class:`ServiceConfig`.

    Without ``path`` the defaults are used; ``overrides`` still apply.
    """

    data: Dict[str, Any] = _load_yaml_mapping(path) if path is not None else {}
    if overrides:
        data = apply_overrides_dict(data, overrides)
    try:
        cfg = ServiceConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid service configuration: {exc}") from exc
    logger.debug("load_config: engine=%s data_dir=%s", cfg.engine.command, cfg.output.data_dir)
    return cfg


def load_simulation_run(path: Path) -> SimulationRun:
    """Load simulation run metadata from YAML.

    Relative paths inside the file are resolved against the file's directory.
    """

    source_path = Path(path).resolve()
    data = _load_yaml_mapping(source_path)
    base = source_path.parent
    if data.get("snapshot_file"):
        data["snapshot_file"] = base / Path(data["snapshot_file"])
    temporal = data.get("temporal")
    if isinstance(temporal, dict):
        for key in ("time_index", "snapshot_dir"):
            if temporal.get(key):
                temporal[key] = base / Path(temporal[key])
    try:
        return SimulationRun(**data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid simulation run metadata in {source_path}: {exc}") from exc


def configure_logging(level: int, suppress_warnings: bool = False) -> None:
    """Configure root logging and optionally silence Python warnings."""

    logging.basicConfig(level=level)
    root = logging.getLogger()
    root.setLevel(level)
    if suppress_warnings:
        warnings.filterwarnings("ignore")
    logging.captureWarnings(True)


__all__ = [
    "parse_override_value",
    "apply_overrides_dict",
    "load_config",
    "load_simulation_run",
    "configure_logging",
]
