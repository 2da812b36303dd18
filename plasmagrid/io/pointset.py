"""Read caller-supplied sample point files into canonical form.

Two input formats are understood:

* plain columnar text (``.txt``/``.dat``): optional leading time token,
  then X Y Z and any number of extra columns; ``#`` lines are comments.
* VOTable (``.vot``/``.vo``/``.votable``/``.xml``): a single table whose
  position fields are found by name or by ``pos.cartesian.*`` UCD.

In both cases positions are converted to meters for the engine while the
original cells are kept untouched for the output stage.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..catalog import DEFAULT_CATALOG, UnitCatalog
from ..errors import InputFormatError, MissingField, ScratchIOError
from ..table import Table, format_value
from .votable import VOField, VOParam, read_votable

logger = logging.getLogger(__name__)

FORMAT_ASCII = "ASCII"
FORMAT_VOTABLE = "VOTable"
FORMAT_NETCDF = "netCDF"

_EXTENSIONS: Dict[str, str] = {
    "": FORMAT_VOTABLE,
    ".vo": FORMAT_VOTABLE,
    ".vot": FORMAT_VOTABLE,
    ".votable": FORMAT_VOTABLE,
    ".xml": FORMAT_VOTABLE,
    ".nc": FORMAT_NETCDF,
    ".cdf": FORMAT_NETCDF,
    ".netcdf": FORMAT_NETCDF,
    ".txt": FORMAT_ASCII,
    ".dat": FORMAT_ASCII,
}

_SPLIT_RE = re.compile(r"[\s,]+")
_POSITION_UCDS = {"pos.cartesian.x": "X", "pos.cartesian.y": "Y", "pos.cartesian.z": "Z"}
_POSITION_KEYS = ("X", "Y", "Z")


def detect_format(path: Path) -> str:
    """Return the input format implied by the file extension."""

    suffix = Path(path).suffix.lower()
    try:
        return _EXTENSIONS[suffix]
    except KeyError:
        raise InputFormatError(f"Input format not recognized: {Path(path).name}") from None


def _is_number(token: str) -> bool:
    try:
        float(token)
    except ValueError:
        return False
    return True


def parse_time(token: str) -> float:
    """Return unix seconds for an ISO 8601 date/time token (UTC if naive)."""

    try:
        stamp = pd.Timestamp(token)
    except (ValueError, TypeError) as exc:
        raise InputFormatError(f"Time format is not ISO 8601: {token}") from exc
    if stamp is pd.NaT:
        raise InputFormatError(f"Time format is not ISO 8601: {token}")
    if stamp.tzinfo is None:
        stamp = stamp.tz_localize("UTC")
    return stamp.timestamp()


def looks_like_time(token: str) -> bool:
    """A token is a time when it is not a number but parses as a date."""

    if _is_number(token):
        return False
    try:
        parse_time(token)
    except InputFormatError:
        return False
    return True


@dataclass
class PointSet:
    """Sample points as read from the caller's file.

    ``original`` holds the cells exactly as written by the caller; the
    position columns named by ``position_columns`` are the ones converted
    to meters in ``positions``.
    """

    source: Path
    source_format: str
    original: Table
    position_columns: Tuple[str, str, str]
    positions: np.ndarray
    time_column: Optional[str] = None
    times: Optional[np.ndarray] = None
    fields: List[VOField] = field(default_factory=list)
    params: List[VOParam] = field(default_factory=list)

    @classmethod
    def from_positions(cls, positions: np.ndarray, source: Optional[Path] = None) -> "PointSet":
        """Point set for generated positions (already in meters)."""

        positions = np.asarray(positions, dtype=float).reshape(-1, 3)
        rows = [[format_value(v) for v in row] for row in positions]
        return cls(
            source=Path(source) if source is not None else Path("generated"),
            source_format=FORMAT_ASCII,
            original=Table.from_rows(list(_POSITION_KEYS), rows),
            position_columns=("X", "Y", "Z"),
            positions=positions,
        )

    def __len__(self) -> int:
        return int(self.positions.shape[0])

    @property
    def has_time(self) -> bool:
        return self.time_column is not None

    @property
    def time_tokens(self) -> List[str]:
        if self.time_column is None:
            return []
        return [str(value) for value in self.original.column(self.time_column)]

    @property
    def extra_columns(self) -> List[str]:
        skip = set(self.position_columns)
        if self.time_column is not None:
            skip.add(self.time_column)
        return [name for name in self.original.columns if name not in skip]

    def canonical_table(self) -> Table:
        """Positions in meters as an ``x y z`` table."""

        frame = pd.DataFrame(self.positions, columns=["x", "y", "z"])
        return Table(["x", "y", "z"], frame)

    def subset(self, indices: Sequence[int]) -> np.ndarray:
        return self.positions[list(indices)]

    def write_engine_input(self, path: Path, indices: Optional[Sequence[int]] = None) -> Path:
        """Write ``x y z`` lines (meters) for the interpolation engine."""

        return write_positions(path, self.positions if indices is None else self.subset(indices))


def write_positions(path: Path, positions: np.ndarray) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savetxt(path, np.atleast_2d(positions).reshape(-1, 3), fmt="%.12e", delimiter=" ")
    except OSError as exc:
        raise ScratchIOError(f"Could not write engine input {path}: {exc}") from exc
    return path


def _time_column(fields: Sequence[VOField], original: Table) -> Tuple[Optional[str], Optional[np.ndarray]]:
    """Return the first ISO 8601 time field and its unix seconds.

    Numeric time fields (seconds, MJD) and fields whose values do not parse
    as dates stay ordinary columns.
    """

    for vo_field in fields:
        if vo_field.name.upper() != "TIME" and vo_field.ucd != "time.epoch":
            continue
        tokens = [str(v) for v in original.column(vo_field.name)]
        if all(_is_number(token) for token in tokens):
            logger.debug("Field %s is numeric; not read as a time column", vo_field.name)
            continue
        try:
            times = np.array([parse_time(token) for token in tokens], dtype=float)
        except InputFormatError as exc:
            logger.warning("Field %s is kept as a plain column: %s", vo_field.name, exc)
            continue
        return vo_field.name, times
    return None, None


class PointSetReader:
    """Turn a sample point file into a :class:`PointSet`."""

    def __init__(self, catalog: Optional[UnitCatalog] = None) -> None:
        self.catalog = catalog if catalog is not None else DEFAULT_CATALOG

    def read(
        self,
        path: Path,
        required_fields: Optional[Sequence[str]] = None,
        position_coefficient: float = 1.0,
    ) -> PointSet:
        path = Path(path)
        fmt = detect_format(path)
        if fmt == FORMAT_NETCDF:
            raise InputFormatError("Input format not recognized: netCDF input files are not supported")
        if not path.is_file():
            raise InputFormatError(f"Input file not found: {path}")
        if fmt == FORMAT_ASCII:
            point_set = self._read_plain(path)
        else:
            point_set = self._read_votable(path, required_fields)
        if position_coefficient != 1.0:
            point_set.positions = point_set.positions * float(position_coefficient)
        logger.info("Read %d sample points from %s (%s)", len(point_set), path.name, fmt)
        return point_set

    def _read_plain(self, path: Path) -> PointSet:
        rows: List[List[str]] = []
        with path.open("r", encoding="utf-8") as fh:
            for line in fh:
                text = line.strip()
                if not text or text.startswith("#"):
                    continue
                rows.append(_SPLIT_RE.split(text))
        if not rows:
            raise InputFormatError(f"No sample points in {path.name}")

        has_time = looks_like_time(rows[0][0])
        offset = 1 if has_time else 0
        width = len(rows[0])
        if width < offset + 3:
            raise InputFormatError(f"Expected at least {offset + 3} columns in {path.name}, found {width}")
        for index, row in enumerate(rows):
            if len(row) != width:
                raise InputFormatError(f"Row {index} of {path.name} has {len(row)} columns, expected {width}")

        columns = (["Time"] if has_time else []) + list(_POSITION_KEYS)
        columns += [f"col{i + 1}" for i in range(len(columns), width)]
        try:
            positions = np.array([[float(v) for v in row[offset : offset + 3]] for row in rows], dtype=float)
        except ValueError as exc:
            raise InputFormatError(f"Non-numeric position in {path.name}: {exc}") from exc
        times = np.array([parse_time(row[0]) for row in rows], dtype=float) if has_time else None
        return PointSet(
            source=path,
            source_format=FORMAT_ASCII,
            original=Table.from_rows(columns, rows),
            position_columns=("X", "Y", "Z"),
            positions=positions,
            time_column="Time" if has_time else None,
            times=times,
        )

    def _column_factor(self, unit: str, params: Sequence[VOParam]) -> float:
        if not unit or self.catalog.is_si_unit(unit):
            return 1.0
        for param in params:
            if param.name and param.name == unit.strip():
                try:
                    return float(param.value)
                except ValueError as exc:
                    raise InputFormatError(f"PARAM {param.name} is not numeric: {param.value}") from exc
        return self.catalog.unit_factor(unit)

    def field_values(self, point_set: PointSet, key: str) -> np.ndarray:
        """Values of the VOTable field named ``key`` (any case), converted to SI."""

        for vo_field in point_set.fields:
            if vo_field.name.upper() != key.upper():
                continue
            try:
                values = np.array([float(v) for v in point_set.original.column(vo_field.name)], dtype=float)
            except ValueError as exc:
                raise InputFormatError(f"Non-numeric value in field {vo_field.name}: {exc}") from exc
            return values * self._column_factor(vo_field.unit, point_set.params)
        raise MissingField(key)

    def _read_votable(self, path: Path, required_fields: Optional[Sequence[str]]) -> PointSet:
        document = read_votable(path)
        keys: Dict[str, int] = {}
        for index, vo_field in enumerate(document.fields):
            key = _POSITION_UCDS.get(vo_field.ucd, vo_field.name.upper())
            if key in keys:
                raise InputFormatError(f"Duplicate field in input table: {vo_field.name}")
            keys[key] = index

        required = [name.upper() for name in (required_fields or _POSITION_KEYS)]
        for name in list(_POSITION_KEYS) + required:
            if name not in keys:
                raise MissingField(name)

        names = [vo_field.name for vo_field in document.fields]
        original = Table.from_rows(names, document.rows)
        position_columns = tuple(names[keys[key]] for key in _POSITION_KEYS)

        positions = np.empty((len(document.rows), 3), dtype=float)
        for axis, key in enumerate(_POSITION_KEYS):
            vo_field = document.fields[keys[key]]
            try:
                values = np.array([float(row[keys[key]]) for row in document.rows], dtype=float)
            except ValueError as exc:
                raise InputFormatError(f"Non-numeric value in field {vo_field.name}: {exc}") from exc
            positions[:, axis] = values * self._column_factor(vo_field.unit, document.params)

        time_column, times = _time_column(document.fields, original)

        return PointSet(
            source=path,
            source_format=FORMAT_VOTABLE,
            original=original,
            position_columns=position_columns,  # type: ignore[arg-type]
            positions=positions,
            time_column=time_column,
            times=times,
            fields=list(document.fields),
            params=list(document.params),
        )


__all__ = [
    "FORMAT_ASCII",
    "FORMAT_VOTABLE",
    "FORMAT_NETCDF",
    "detect_format",
    "parse_time",
    "looks_like_time",
    "PointSet",
    "PointSetReader",
    "write_positions",
]
