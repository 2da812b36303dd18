"""Per-request scratch files and housekeeping of stale files."""
from __future__ import annotations

import logging
import secrets
import string
import time
from pathlib import Path
from typing import List, Optional

from .errors import ScratchIOError
from .schema import ScratchConfig

logger = logging.getLogger(__name__)

_ALPHABET = string.ascii_letters + string.digits


def random_suffix(length: int = 10) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _ensure_dir(directory: Path) -> Path:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ScratchIOError(f"Cannot create directory {directory}: {exc}") from exc
    return directory


class ScratchSpace:
    """Issue unique file names for one request and remove them afterwards.

    Use as a context manager; every path handed out by :meth:`new_path` is
    deleted on exit unless it was released with :meth:`keep`.
    """

    def __init__(self, config: Optional[ScratchConfig] = None) -> None:
        self.config = config if config is not None else ScratchConfig()
        self.directory = Path(self.config.dir)
        self._paths: List[Path] = []

    def new_name(self, extension: str = ".txt") -> str:
        if extension and not extension.startswith("."):
            extension = "." + extension
        return f"{self.config.prefix}{random_suffix(self.config.suffix_length)}{extension}"

    def new_path(self, extension: str = ".txt", directory: Optional[Path] = None) -> Path:
        """Return a fresh path inside ``directory`` (default: the scratch dir)."""

        target = _ensure_dir(Path(directory) if directory is not None else self.directory)
        path = target / self.new_name(extension)
        while path.exists():
            path = target / self.new_name(extension)
        self._paths.append(path)
        return path

    def track(self, path: Path) -> Path:
        self._paths.append(Path(path))
        return Path(path)

    def keep(self, path: Path) -> Path:
        """Exclude ``path`` from cleanup."""

        self._paths = [p for p in self._paths if p != Path(path)]
        return Path(path)

    def cleanup(self) -> None:
        for path in self._paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove scratch file %s: %s", path, exc)
        self._paths = []

    def __enter__(self) -> "ScratchSpace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()


def purge_stale(directory: Path, prefix: str, max_age_s: float, now: Optional[float] = None) -> int:
    """Delete files named ``prefix*`` older than ``max_age_s``; return the count."""

    directory = Path(directory)
    if not directory.is_dir():
        return 0
    current = time.time() if now is None else now
    removed = 0
    for path in directory.glob(f"{prefix}*"):
        if not path.is_file():
            continue
        if current - path.stat().st_mtime <= max_age_s:
            continue
        try:
            path.unlink()
        except OSError as exc:
            logger.warning("Could not purge %s: %s", path, exc)
            continue
        removed += 1
    if removed:
        logger.info("Purged %d stale files from %s", removed, directory)
    return removed


__all__ = ["random_suffix", "ScratchSpace", "purge_stale"]
