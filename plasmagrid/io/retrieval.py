"""Fetch caller-referenced input files into the scratch directory."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePosixPath
from urllib.error import URLError
from urllib.parse import unquote, urlparse
from urllib.request import urlretrieve

from ..errors import RetrievalError
from ..scratch import ScratchSpace

logger = logging.getLogger(__name__)


def url_extension(url: str) -> str:
    """Extension of the last path segment of ``url`` (``""`` if none)."""

    return PurePosixPath(unquote(urlparse(url).path)).suffix.lower()


def fetch_url(url: str, scratch: ScratchSpace) -> Path:
    """Copy ``url`` to a scratch file that keeps the URL's extension.

    Plain paths and ``file://`` URLs are copied locally; anything else goes
    through :func:`urllib.request.urlretrieve`.
    """

    target = scratch.new_path(url_extension(url))
    parsed = urlparse(url)
    try:
        if parsed.scheme in ("", "file"):
            source = Path(unquote(parsed.path) if parsed.scheme == "file" else url)
            shutil.copyfile(source, target)
        else:
            urlretrieve(url, target)
    except (OSError, URLError, ValueError) as exc:
        raise RetrievalError(f"Could not download input data file: {url} ({exc})") from exc
    logger.info("Fetched %s into %s", url, target.name)
    return target


__all__ = ["url_extension", "fetch_url"]
