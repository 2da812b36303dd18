"""Provenance text attached to result files.

Every result names the simulation it was computed from and lists the
resolved input parameters of the request, so that a file on its own is
enough to reproduce it.
"""

from __future__ import annotations

import datetime as dt
from importlib import metadata
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

from .schema import SimulationRun

_INDENT_BASE = "     "
_INDENT_STEP = "    "


def _utc_timestamp_iso() -> str:
    stamp = dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()
    return stamp.replace("+00:00", "Z")


def _safe_package_version(dist_name: str) -> str | None:
    try:
        return metadata.version(dist_name)
    except metadata.PackageNotFoundError:
        return None


def describe_parameter(key: str, value: Any, indent: int = 1) -> str:
    """Render one input parameter; mappings are expanded recursively."""

    pad = _INDENT_BASE + _INDENT_STEP * indent
    if isinstance(value, Mapping):
        lines = [f"{pad}{key} => ["]
        lines.extend(describe_parameter(str(k), v, indent + 1) for k, v in value.items())
        lines.append(f"{pad}]")
        return "\n".join(lines)
    if isinstance(value, (list, tuple)):
        return f"{pad}{key} => [{', '.join(str(item) for item in value)}]"
    return f"{pad}{key} => {value}"


def request_parameters(request: BaseModel | Mapping[str, Any] | None) -> Dict[str, Any]:
    if request is None:
        return {}
    if isinstance(request, BaseModel):
        return request.model_dump(mode="json", exclude_none=True)
    return dict(request)


def description_block(
    header: str,
    run: SimulationRun,
    request: BaseModel | Mapping[str, Any] | None = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> str:
    """Return the free-text provenance block of a result file."""

    lines = [header.rstrip()]
    lines.append(f"  SimulationModel            : {run.title}")
    lines.append(f"  SimulationModel_ResourceID : {run.model_resource_id}")
    lines.append(f"  SimulationRun_ResourceID   : {run.run_resource_id}")
    lines.append(f"  NumericalOutput_ResourceID : {run.resource_id}")
    lines.append(f"  Content description        : {run.output_description}")
    lines.append(f"  Object                     : {run.planet_name}")
    lines.append(f"  Object radius              : {run.planet_radius} {run.planet_radius_units}")
    lines.append(f"  Coordinate system          : {run.coordinate_system}")
    for key, value in (extra or {}).items():
        lines.append(f"  {key:<27}: {value}")
    lines.append("")
    lines.append("  Input parameters : ")
    for key, value in request_parameters(request).items():
        lines.append(describe_parameter(key, value))
    lines.append("")
    version = _safe_package_version("plasmagrid")
    lines.append(f"  Generated by plasmagrid {version or 'dev'} at {_utc_timestamp_iso()}")
    return "\n".join(lines) + "\n"


__all__ = ["describe_parameter", "request_parameters", "description_block"]
