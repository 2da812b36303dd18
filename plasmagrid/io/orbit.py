"""Fetch spacecraft ephemerides and turn them into sample point files.

The ephemeris service answers with ASCII data in planetary radii::

    #mex_xyz - Type : Local Parameter @ CDPP/AMDA - Name : xyz_mso - Units : Rm - Frame : MSO - Mission : MEX
    2011-01-10T12:05:00.000      2.48460     -2.27544      1.54321

or with a small JSON document whose ``dataFileURLs`` entry points at that
file.  :func:`fetch_orbit` checks the frame against the simulation run and
writes ``time x y z`` lines in meters that :class:`PointSetReader` reads
like any other plain input.
"""
from __future__ import annotations

import datetime as dt
import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from ..catalog import DEFAULT_CATALOG, UnitCatalog
from ..errors import OrbitSourceError, RequestError, RetrievalError, ScratchIOError
from ..schema import OrbitSourceConfig, SimulationRun, SpacecraftRequest
from ..scratch import ScratchSpace
from .retrieval import fetch_url

logger = logging.getLogger(__name__)

_SPLIT_RE = re.compile(r"\s+")


def _iso(stamp: dt.datetime) -> str:
    return stamp.strftime("%Y-%m-%dT%H:%M:%S")


def orbit_url(config: OrbitSourceConfig, request: SpacecraftRequest) -> str:
    """Fill the configured URL template for ``request``."""

    try:
        parameter_id = config.spacecraft[request.spacecraft_name]
    except KeyError:
        known = ", ".join(sorted(config.spacecraft))
        raise RequestError(f"Unknown spacecraft: {request.spacecraft_name} (known: {known})") from None
    return config.url_template.format(
        start=_iso(request.start_time),
        stop=_iso(request.stop_time),
        sampling=int(round(request.sampling.total_seconds())),
        parameter_id=parameter_id,
    )


def header_fields(line: str) -> Dict[str, str]:
    """``key : value`` pairs of an ephemeris header line."""

    fields: Dict[str, str] = {}
    for part in line.lstrip("#").split(" - "):
        key, sep, value = part.partition(":")
        if sep:
            fields[key.strip()] = value.strip()
    return fields


def orbit_lines(text: str, run: SimulationRun, scale: float) -> List[str]:
    """Data lines of an ephemeris file as ``time x y z`` in meters.

    Raises :class:`OrbitSourceError` when the file is given in another frame
    than the simulation run.
    """

    lines: List[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            frame = header_fields(line).get("Frame")
            if "AMDA" in line and frame is not None and frame != run.coordinate_system:
                raise OrbitSourceError(
                    f"Spacecraft orbit is not in the simulation coordinate system: {run.coordinate_system} vs. {frame}"
                )
            continue
        tokens = _SPLIT_RE.split(line)
        if len(tokens) < 4:
            raise OrbitSourceError(f"Unexpected orbit data line: {line}")
        try:
            x, y, z = (scale * float(token) for token in tokens[1:4])
        except ValueError as exc:
            raise OrbitSourceError(f"Unexpected orbit data line: {line}") from exc
        lines.append(f"{tokens[0]} {x:e} {y:e} {z:e}")
    if not lines:
        raise OrbitSourceError("Spacecraft orbit contains no data for the requested interval")
    return lines


def _data_file(local: Path, scratch: ScratchSpace) -> str:
    text = local.read_text(encoding="utf-8")
    if not text.lstrip().startswith("{"):
        return text
    try:
        answer = json.loads(text)
    except json.JSONDecodeError as exc:
        raise OrbitSourceError(f"Unexpected answer from the orbit service: {exc}") from exc
    url = answer.get("dataFileURLs") if isinstance(answer, dict) else None
    if not url:
        raise OrbitSourceError(f"Orbit service returned no data file: {text.strip()[:200]}")
    return fetch_url(url, scratch).read_text(encoding="utf-8")


def fetch_orbit(
    request: SpacecraftRequest,
    run: SimulationRun,
    config: OrbitSourceConfig,
    scratch: ScratchSpace,
    catalog: Optional[UnitCatalog] = None,
) -> Path:
    """Fetch the orbit of ``request`` and write it as a plain sample file."""

    catalog = catalog if catalog is not None else DEFAULT_CATALOG
    url = orbit_url(config, request)
    try:
        text = _data_file(fetch_url(url, scratch), scratch)
    except RetrievalError as exc:
        raise OrbitSourceError(f"Could not fetch spacecraft orbit: {exc}") from exc
    scale = run.planet_radius * catalog.unit_factor(run.planet_radius_units)
    lines = orbit_lines(text, run, scale)

    target = scratch.new_path(".txt")
    try:
        target.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as exc:
        raise ScratchIOError(f"Could not write orbit file {target}: {exc}") from exc
    logger.info("Fetched %d orbit points of %s", len(lines), request.spacecraft_name)
    return target


__all__ = ["orbit_url", "header_fields", "orbit_lines", "fetch_orbit"]
