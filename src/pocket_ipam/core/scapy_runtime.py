"""Scapy writes a cache under XDG_CACHE_HOME on import; point it somewhere writable first."""
from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

from pocket_ipam.utils.logging import get_logger

from .errors import StorageError

logger = get_logger(__name__)

CACHE_DIRNAME = "pocket-ipam"


def cache_candidates() -> list[Path]:
    """Cache directories to try, most preferred first.

    An XDG_CACHE_HOME chosen by the user wins; otherwise the per-user cache folder
    of the platform, then a folder in the system temp dir.
    """
    candidates: list[Path] = []
    configured = os.environ.get("XDG_CACHE_HOME", "").strip()
    if configured:
        candidates.append(Path(configured).expanduser())
    if sys.platform == "darwin":
        candidates.append(Path.home() / "Library" / "Caches" / CACHE_DIRNAME)
    else:
        candidates.append(Path.home() / ".cache" / CACHE_DIRNAME)
    candidates.append(Path(tempfile.gettempdir()) / f"{CACHE_DIRNAME}-cache")
    return candidates


def prepare_scapy_cache() -> Path:
    """Export the first usable cache directory as XDG_CACHE_HOME and return it."""
    for candidate in cache_candidates():
        try:
            candidate.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.debug("cache dir %s unusable: %s", candidate, exc)
            continue
        if not os.access(candidate, os.W_OK):
            logger.debug("cache dir %s is not writable", candidate)
            continue
        os.environ["XDG_CACHE_HOME"] = str(candidate)
        return candidate
    raise StorageError("no writable cache directory for scapy")
