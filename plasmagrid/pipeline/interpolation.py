"""Adapter around the external interpolation engine.

The engine reads ``x y z`` lines (meters) on standard input and writes a
header line ``# x y z <symbols...>`` followed by one row per sample.  The
header it writes is authoritative: its column order may differ from the
order the symbols were requested in.
"""
from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from ..constants import INTERPOLATION_LINEAR, INTERPOLATION_NEAREST
from ..errors import EngineFailure, RequestError
from ..schema import EngineConfig
from ..table import Table

logger = logging.getLogger(__name__)

_SPLIT_RE = re.compile(r"[\s,]+")
_COMMENT_PREFIXES = ("#", ">", "%")


def parse_columnar_output(text: str, *, source: str = "engine", error: type = EngineFailure) -> Table:
    """Parse ``# header`` + numeric rows into a :class:`Table`.

    Later comment lines are kept as table comments; any row whose width
    differs from the header raises ``error``.
    """

    header: Optional[List[str]] = None
    rows: List[List[float]] = []
    comments: List[str] = []
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue
        if header is None:
            if not stripped.startswith("#"):
                raise error(f"{source} output has no column header (line {number}: {stripped[:40]!r})")
            header = [token for token in _SPLIT_RE.split(stripped.lstrip("#").strip()) if token]
            if not header:
                raise error(f"{source} output header is empty")
            continue
        if stripped.startswith(_COMMENT_PREFIXES):
            comments.append(stripped)
            continue
        tokens = _SPLIT_RE.split(stripped)
        if len(tokens) != len(header):
            raise error(f"{source} output line {number} has {len(tokens)} values for {len(header)} columns")
        try:
            rows.append([float(token) for token in tokens])
        except ValueError as exc:
            raise error(f"{source} output line {number} is not numeric: {exc}") from exc
    if header is None:
        raise error(f"{source} produced no output")
    try:
        return Table.from_rows(header, rows, comments)
    except ValueError as exc:
        raise error(f"{source} output is malformed: {exc}") from exc


def run_tool(
    command: Sequence[str],
    *,
    stdin_path: Optional[Path] = None,
    timeout: Optional[float] = None,
    error: type = EngineFailure,
    label: str = "engine",
    status_messages: Optional[Mapping[int, str]] = None,
) -> str:
    """Run an external tool and return its standard output.

    Non-zero exit, a missing executable or an exceeded timeout raise ``error``;
    exit statuses listed in ``status_messages`` raise it with that message.
    """

    logger.debug("Running %s: %s", label, " ".join(str(part) for part in command))
    try:
        if stdin_path is not None:
            with Path(stdin_path).open("r", encoding="utf-8") as fh:
                result = subprocess.run(
                    [str(part) for part in command],
                    stdin=fh,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    check=False,
                    timeout=timeout,
                )
        else:
            result = subprocess.run(
                [str(part) for part in command],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
                timeout=timeout,
            )
    except subprocess.TimeoutExpired as exc:
        raise error(f"{label} timed out after {timeout} s") from exc
    except OSError as exc:
        raise error(f"{label} could not be started: {exc}") from exc
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        logger.error("%s exited with status %d: %s", label, result.returncode, stderr[-500:])
        if status_messages and result.returncode in status_messages:
            raise error(status_messages[result.returncode])
        raise error(f"{label} failed with exit status {result.returncode}")
    return result.stdout


class InterpolationInvoker:
    """Run the interpolation engine for one batch of samples."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config if config is not None else EngineConfig()

    def build_command(self, snapshot_file: Path, symbols: Sequence[str], method: str) -> List[str]:
        if not symbols:
            raise RequestError("No variables requested")
        if method not in (INTERPOLATION_LINEAR, INTERPOLATION_NEAREST):
            raise RequestError(f"Undefined interpolation method: {method}")
        command = list(self.config.command)
        command += [self.config.variables_flag, ",".join(symbols)]
        if method == INTERPOLATION_NEAREST:
            command.append(self.config.nearest_flag)
        command.append(str(snapshot_file))
        return command

    def invoke(
        self,
        sample_file: Path,
        snapshot_file: Path,
        symbols: Sequence[str],
        method: str = INTERPOLATION_LINEAR,
    ) -> Table:
        """Interpolate ``symbols`` at the samples of ``sample_file``."""

        command = self.build_command(snapshot_file, symbols, method)
        if not Path(snapshot_file).is_file():
            raise EngineFailure(f"Error in reading local data file: {Path(snapshot_file).name}")
        stdout = run_tool(command, stdin_path=sample_file, timeout=self.config.timeout_s)
        table = parse_columnar_output(stdout)
        logger.debug("Engine returned %d rows with columns %s", len(table), table.columns)
        return table


__all__ = ["parse_columnar_output", "run_tool", "InterpolationInvoker"]
