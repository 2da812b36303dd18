"""Adapter around the external field line tracer.

The tracer integrates magnetic field (``B``) or plasma velocity (``v``)
lines from a file of start points and prints one line per step::

    <line number> x y z Fx Fy Fz

Lines starting with ``#``, ``>`` or ``%`` are annotations.
"""
from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from ..errors import RequestError, TracerFailure, UnknownVariable
from ..names import DEFAULT_TRANSLATOR, NameTranslator
from ..schema import FieldLineRequest, SimulationDomain, TracerConfig
from ..table import Table
from .interpolation import run_tool

logger = logging.getLogger(__name__)

_SPLIT_RE = re.compile(r"[\s,]+")

# tracer field kind -> (component symbols, magnitude symbol)
# checked in order; velocity is traced when both kinds are requested
FIELD_KINDS = {
    "v": (("vx", "vy", "vz"), "v"),
    "B": (("Bx", "By", "Bz"), "B"),
}

LINE_COLUMN = "Line_no"


def field_kind(keys: Sequence[str], translator: Optional[NameTranslator] = None) -> str:
    """Return ``"B"`` or ``"v"`` for the requested parameter keys.

    Velocity wins when both kinds are requested.
    """

    translator = translator if translator is not None else DEFAULT_TRANSLATOR
    symbols = set()
    for key in keys:
        try:
            symbols.add(translator.symbol(key))
        except UnknownVariable:
            continue
    for kind, (components, magnitude) in FIELD_KINDS.items():
        if symbols & {*components, magnitude}:
            return kind
    raise RequestError("The field line tracer requires either Btot or Utot as variable")


def default_step_size(domain: Optional[SimulationDomain]) -> float:
    if domain is None:
        raise RequestError("StepSize must be given for runs without a simulation domain")
    return float(domain.cell_size[0]) / 4.0


def parse_tracer_output(text: str, kind: str) -> Table:
    """Parse tracer lines into ``Line_no x y z Fx Fy Fz F`` rows."""

    components, magnitude = FIELD_KINDS[kind]
    rows: List[list] = []
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", ">", "%")):
            continue
        tokens = _SPLIT_RE.split(stripped)
        if len(tokens) < 7:
            raise TracerFailure(f"field line tracer line {number} has {len(tokens)} values, expected 7")
        try:
            line_no = int(float(tokens[0]))
            values = [float(token) for token in tokens[1:7]]
        except ValueError as exc:
            raise TracerFailure(f"field line tracer line {number} is not numeric: {exc}") from exc
        norm = math.sqrt(values[3] ** 2 + values[4] ** 2 + values[5] ** 2)
        rows.append([line_no] + values + [norm])
    columns = [LINE_COLUMN, "x", "y", "z", *components, magnitude]
    if not rows:
        frame = pd.DataFrame({name: pd.Series(dtype="float64") for name in columns})
        frame[LINE_COLUMN] = frame[LINE_COLUMN].astype("int64")
        return Table(columns, frame)
    table = Table.from_rows(columns, rows)
    table.frame[LINE_COLUMN] = table.frame[LINE_COLUMN].astype("int64")
    return table


def line_number_last(table: Table) -> Table:
    """Move the line number column behind the field values."""

    columns = [name for name in table.columns if name != LINE_COLUMN] + [LINE_COLUMN]
    return Table(columns, table.frame[columns].copy(), list(table.comments))


class FieldLineTracer:
    """Run the tracer forward, backward or both ways from a set of start points."""

    def __init__(self, config: Optional[TracerConfig] = None) -> None:
        self.config = config if config is not None else TracerConfig()

    def build_command(
        self,
        kind: str,
        snapshot_file: Path,
        start_file: Path,
        request: FieldLineRequest,
        step_size: float,
        backward: bool = False,
    ) -> List[str]:
        command = list(self.config.command)
        if backward:
            command.append(self.config.backward_flag)
        if request.stop_radius is not None:
            command += ["-r", f"{request.stop_radius:g}"]
        if request.stop_region is not None:
            command += ["-l", ",".join(f"{value:g}" for value in request.stop_region)]
        command += ["-ms", str(request.max_steps), "-ss", f"{step_size:g}"]
        command += [kind, str(snapshot_file), "-i", str(start_file)]
        return command

    def trace(
        self,
        start_file: Path,
        snapshot_file: Path,
        kind: str,
        request: FieldLineRequest,
        step_size: float,
    ) -> Table:
        if kind not in FIELD_KINDS:
            raise RequestError(f"Unknown field line kind: {kind}")
        if not Path(snapshot_file).is_file():
            raise TracerFailure(f"Error in reading local data file: {Path(snapshot_file).name}")
        directions = {"Forward": [False], "Backward": [True], "Both": [False, True]}[request.direction]
        tables = []
        for backward in directions:
            command = self.build_command(kind, snapshot_file, start_file, request, step_size, backward)
            stdout = run_tool(
                command,
                timeout=self.config.timeout_s,
                error=TracerFailure,
                label="field line tracer",
            )
            tables.append(parse_tracer_output(stdout, kind))
        table = Table.concat(tables)
        table.frame[LINE_COLUMN] = table.frame[LINE_COLUMN].astype("int64")
        logger.info(
            "Traced %d field line points (%s, %s) in %d lines",
            len(table),
            kind,
            request.direction,
            int(np.unique(table.frame[LINE_COLUMN]).size),
        )
        return table


__all__ = [
    "FIELD_KINDS",
    "LINE_COLUMN",
    "field_kind",
    "default_step_size",
    "parse_tracer_output",
    "line_number_last",
    "FieldLineTracer",
]
