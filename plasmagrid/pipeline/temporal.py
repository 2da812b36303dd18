"""Snapshot selection for time-varying simulation runs.

A dynamic run is a sequence of snapshots, each valid at one instant.  Every
sample is interpolated in the snapshot whose time is closest to the
sample's own time; samples outside the covered interval are filled with the
missing-value sentinel instead.
"""
from __future__ import annotations

import datetime as dt
import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from ..constants import INTERPOLATION_LINEAR, MISSING_SENTINEL, SNAPSHOT_SEARCH_WINDOW_S
from ..errors import ConfigurationError, EngineFailure, InputFormatError
from ..io.pointset import PointSet, write_positions
from ..schema import TemporalCoverage
from ..table import Table
from ..warnings import TemporalCoverageWarning
from .interpolation import InterpolationInvoker

logger = logging.getLogger(__name__)

SNAPSHOT_ID_FORMAT = "%Y%m%d_%H%M%S"


def snapshot_id_for(timestamp: float) -> str:
    """Return the ``YYYYMMDD_HHMMSS`` identifier of a unix time (UTC)."""

    return dt.datetime.fromtimestamp(float(timestamp), tz=dt.timezone.utc).strftime(SNAPSHOT_ID_FORMAT)


def snapshot_time(snapshot_id: str) -> float:
    try:
        stamp = dt.datetime.strptime(snapshot_id[:15], SNAPSHOT_ID_FORMAT)
    except ValueError as exc:
        raise InputFormatError(f"Snapshot identifier must end with YYYYMMDD_HHMMSS: {snapshot_id}") from exc
    return stamp.replace(tzinfo=dt.timezone.utc).timestamp()


@dataclass(frozen=True, eq=False)
class RunTimeIndex:
    """Strictly increasing snapshot times (unix seconds) with their identifiers."""

    times: np.ndarray
    snapshot_ids: Tuple[str, ...]

    def __post_init__(self) -> None:
        times = np.asarray(self.times, dtype=float)
        object.__setattr__(self, "times", times)
        if times.ndim != 1 or times.size == 0:
            raise ConfigurationError("Run time index must be a non-empty sequence")
        if len(self.snapshot_ids) != times.size:
            raise ConfigurationError("Run time index needs one snapshot identifier per time")
        if np.any(np.diff(times) <= 0.0):
            raise ConfigurationError("Run time index must be strictly increasing")

    @classmethod
    def from_times(cls, times: Sequence[float]) -> "RunTimeIndex":
        values = np.asarray(times, dtype=float)
        return cls(values, tuple(snapshot_id_for(t) for t in values))

    @classmethod
    def from_file(cls, path: Path) -> "RunTimeIndex":
        """Load one unix time per line; blank lines and ``#`` comments are skipped."""

        try:
            values = np.loadtxt(Path(path), dtype=float, comments="#", ndmin=1)
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"Cannot read run time index {path}: {exc}") from exc
        return cls.from_times(values)

    def __len__(self) -> int:
        return int(self.times.size)

    @property
    def first(self) -> float:
        return float(self.times[0])

    @property
    def last(self) -> float:
        return float(self.times[-1])

    def covers(self, t: float) -> bool:
        return self.first <= t <= self.last


class SnapshotResolver:
    """Map snapshot identifiers to snapshot files on disk."""

    def __init__(self, root: Path, template: str = "{date}/mstate{snapshot_id}.hc") -> None:
        self.root = Path(root)
        self.template = template

    @classmethod
    def from_coverage(cls, coverage: TemporalCoverage) -> "SnapshotResolver":
        return cls(coverage.snapshot_dir, coverage.snapshot_template)

    def path_for(self, snapshot_id: str) -> Path:
        return self.root / self.template.format(date=snapshot_id[:8], snapshot_id=snapshot_id)

    def __call__(self, snapshot_id: str) -> Path:
        return self.path_for(snapshot_id)

    def locate(self, snapshot_id: str, window_s: int = SNAPSHOT_SEARCH_WINDOW_S) -> Path:
        """Find the file of a snapshot whose identifier may be off by a few minutes.

        Seconds are dropped and whole minutes up to ``window_s`` either side are
        tried, nearest first.
        """

        base = snapshot_time(snapshot_id[:13] + "00")
        offsets = [0]
        for minute in range(1, window_s // 60 + 1):
            offsets += [minute, -minute]
        for offset in offsets:
            candidate = self.path_for(snapshot_id_for(base + 60 * offset))
            if candidate.is_file():
                return candidate
        raise EngineFailure(f"Error in reading local data file: no snapshot near {snapshot_id}")


class TemporalRunSelector:
    """Interpolate each sample in the snapshot nearest to its time.

    Samples exactly halfway between two snapshots use the later one.
    """

    def __init__(
        self,
        invoker: InterpolationInvoker,
        scratch_path: Callable[[], Path],
        batch_consecutive: bool = False,
    ) -> None:
        self.invoker = invoker
        self.scratch_path = scratch_path
        self.batch_consecutive = batch_consecutive

    @staticmethod
    def nearest_indices(times: np.ndarray, run_index: RunTimeIndex) -> List[Optional[int]]:
        """Return the chosen snapshot index per sample (``None`` when uncovered)."""

        run_times = run_index.times
        chosen: List[Optional[int]] = []
        pointer = 0
        for t in np.asarray(times, dtype=float):
            if not run_index.covers(t):
                chosen.append(None)
                continue
            if pointer > 0 and t < run_times[pointer - 1]:
                logger.debug("Sample time %s precedes the previous one; restarting snapshot scan", t)
                pointer = 0
            while run_times[pointer] < t:
                pointer += 1
            if pointer == 0:
                chosen.append(0)
                continue
            dt_prev = t - run_times[pointer - 1]
            dt_next = run_times[pointer] - t
            chosen.append(pointer - 1 if dt_prev < dt_next else pointer)
        return chosen

    def _groups(self, chosen: Sequence[Optional[int]]) -> List[Tuple[Optional[int], List[int]]]:
        groups: List[Tuple[Optional[int], List[int]]] = []
        for sample, snapshot in enumerate(chosen):
            if (
                self.batch_consecutive
                and groups
                and snapshot is not None
                and groups[-1][0] == snapshot
            ):
                groups[-1][1].append(sample)
            else:
                groups.append((snapshot, [sample]))
        return groups

    def select(
        self,
        point_set: PointSet,
        run_index: RunTimeIndex,
        resolver: Callable[[str], Path],
        symbols: Sequence[str],
        method: str = INTERPOLATION_LINEAR,
    ) -> Table:
        """Return one result row per sample, in input order."""

        if point_set.times is None:
            raise InputFormatError("Dynamic runs require a time column in the input data")
        chosen = self.nearest_indices(point_set.times, run_index)
        missing = sum(1 for index in chosen if index is None)
        if missing:
            logger.warning(
                "%d of %d samples fall outside the run interval %s .. %s; filled with %s",
                missing,
                len(chosen),
                snapshot_id_for(run_index.first),
                snapshot_id_for(run_index.last),
                MISSING_SENTINEL,
            )
            warnings.warn(f"{missing} samples outside the run time coverage", TemporalCoverageWarning, stacklevel=2)

        header: Optional[List[str]] = None
        rows: List[List[float]] = []
        comments: List[str] = []
        for snapshot, samples in self._groups(chosen):
            if snapshot is None:
                position = point_set.positions[samples[0]]
                rows.append([float(v) for v in position] + [MISSING_SENTINEL] * len(symbols))
                continue
            snapshot_file = resolver(run_index.snapshot_ids[snapshot])
            sample_file = write_positions(self.scratch_path(), point_set.positions[samples])
            result = self.invoker.invoke(sample_file, snapshot_file, symbols, method)
            if len(result) != len(samples):
                raise EngineFailure(
                    f"engine returned {len(result)} rows for {len(samples)} samples of snapshot "
                    f"{run_index.snapshot_ids[snapshot]}"
                )
            if header is None:
                header = list(result.columns)
            elif len(result.columns) != len(header):
                raise EngineFailure(f"engine header changed from {header} to {result.columns}")
            rows.extend(result.iter_rows())
            comments.extend(result.comments)

        if header is None:
            header = ["x", "y", "z"] + list(symbols)
        try:
            return Table.from_rows(header, rows, comments)
        except ValueError as exc:
            raise EngineFailure(f"inconsistent dynamic result table: {exc}") from exc


__all__ = [
    "snapshot_id_for",
    "snapshot_time",
    "RunTimeIndex",
    "SnapshotResolver",
    "TemporalRunSelector",
]
