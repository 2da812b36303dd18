"""Ordered sample tables passed between the pipeline stages."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .constants import MISSING_SENTINEL


def format_value(value: Any) -> str:
    """Render one cell for a columnar text file."""

    if isinstance(value, (float, np.floating)):
        if np.isnan(value):
            return "NaN"
        return f"{float(value):.10g}"
    if isinstance(value, (int, np.integer)):
        return str(int(value))
    return str(value)


@dataclass
class Table:
    """Rows sharing one column schema, plus pass-through comment lines.

    Every row has exactly ``len(columns)`` cells.  Numeric columns are held
    as ``float64``; time columns keep their original text tokens.
    """

    columns: List[str]
    frame: pd.DataFrame
    comments: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.columns = list(self.columns)
        if len(set(self.columns)) != len(self.columns):
            raise ValueError(f"duplicate column names in {self.columns}")
        if self.frame.shape[1] != len(self.columns):
            raise ValueError(
                f"table has {self.frame.shape[1]} columns but header names {len(self.columns)}"
            )
        self.frame.columns = self.columns
        self.frame.reset_index(drop=True, inplace=True)

    @classmethod
    def from_rows(
        cls,
        columns: Sequence[str],
        rows: Iterable[Sequence[Any]],
        comments: Optional[List[str]] = None,
    ) -> "Table":
        """Build a table from row sequences, checking every row's width."""

        width = len(columns)
        data = []
        for index, row in enumerate(rows):
            values = list(row)
            if len(values) != width:
                raise ValueError(f"row {index} has {len(values)} values, expected {width}")
            data.append(values)
        frame = pd.DataFrame(data, columns=list(columns))
        if not data:
            frame = pd.DataFrame({name: pd.Series(dtype="float64") for name in columns})
        return cls(list(columns), frame, list(comments or []))

    @classmethod
    def concat(cls, tables: Sequence["Table"], columns: Optional[Sequence[str]] = None) -> "Table":
        """Concatenate tables in order; all must share the same width."""

        if not tables:
            if columns is None:
                raise ValueError("cannot concatenate an empty list without columns")
            return cls.from_rows(columns, [])
        header = list(columns) if columns is not None else list(tables[0].columns)
        frames = []
        comments: List[str] = []
        for table in tables:
            if len(table.columns) != len(header):
                raise ValueError(
                    f"cannot append a {len(table.columns)}-column table to a {len(header)}-column one"
                )
            frame = table.frame.copy()
            frame.columns = header
            frames.append(frame)
            comments.extend(table.comments)
        return cls(header, pd.concat(frames, ignore_index=True), comments)

    def __len__(self) -> int:
        return len(self.frame)

    def column(self, name: str) -> np.ndarray:
        return self.frame[name].to_numpy()

    def values(self) -> np.ndarray:
        """Return the numeric cells as a ``float64`` array."""

        return self.frame.to_numpy(dtype=float)

    def copy(self) -> "Table":
        return Table(list(self.columns), self.frame.copy(), list(self.comments))

    def is_missing(self, name: str) -> np.ndarray:
        values = self.frame[name].to_numpy(dtype=float)
        return np.isclose(values, MISSING_SENTINEL)

    def iter_rows(self) -> Iterable[List[Any]]:
        for row in self.frame.itertuples(index=False, name=None):
            yield list(row)

    def write_text(self, path: Path, *, header: Optional[str] = None) -> Path:
        """Write a whitespace-separated columnar file.

        ``header`` replaces the default ``#name name ...`` first line; pass an
        empty string to omit the header.
        """

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if header is None:
            header = "#" + " ".join(self.columns)
        with path.open("w", encoding="utf-8") as fh:
            if header:
                fh.write(header.rstrip("\n") + "\n")
            for row in self.iter_rows():
                fh.write(" ".join(format_value(value) for value in row) + "\n")
        return path


__all__ = ["Table", "format_value"]
