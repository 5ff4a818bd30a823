"""Mirror root layout: source URL marker, root manifest backup, file scanning."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from repocheck.exceptions import SourceError
from repocheck.filesystem.manifest import mirror_path

if TYPE_CHECKING:
    from repocheck.config import Settings

logger = logging.getLogger(__name__)


def normalize_source_url(url: str) -> str:
    """Validate a remote source URL and make it end with exactly one ``/``.

    Raises ValueError when the URL has no http(s) scheme or no host.
    """
    normalized = url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        msg = f"Source URL must include http(s) scheme and host: {url!r}"
        raise ValueError(msg)
    return normalized + "/"


def read_source_url(root: Path, settings: Settings) -> str:
    """Return the source URL recorded by the last explicit update.

    Raises SourceError if no source was ever recorded.
    """
    marker = mirror_path(root, settings.source_marker)
    try:
        lines = marker.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        msg = f"No recorded source URL ({settings.source_marker} is missing)"
        raise SourceError(msg) from None
    first = lines[0].strip() if lines else ""
    if not first:
        msg = f"Recorded source URL file {settings.source_marker} is empty"
        raise SourceError(msg)
    try:
        return normalize_source_url(first)
    except ValueError as exc:
        raise SourceError(str(exc)) from exc


def write_source_url(root: Path, settings: Settings, url: str) -> None:
    """Record ``url`` as the mirror's source."""
    marker = mirror_path(root, settings.source_marker)
    marker.write_text(url + "\n", encoding="utf-8")
    logger.debug("Recorded source URL %s in %s", url, marker)


def backup_root_manifest(root: Path, settings: Settings) -> str | None:
    """Move the current root manifest aside before a fresh copy is fetched.

    Any previous backup is replaced. Returns the backup's relative path, or
    None if there was no root manifest to back up.
    """
    current = mirror_path(root, settings.root_manifest)
    if not current.is_file():
        return None
    backup = mirror_path(root, settings.backup_manifest)
    backup.unlink(missing_ok=True)
    current.rename(backup)
    logger.debug("Backed up %s to %s", settings.root_manifest, settings.backup_manifest)
    return settings.backup_manifest


def restore_root_manifest(root: Path, settings: Settings) -> bool:
    """Put the backup back in place. Returns False if there is no backup."""
    backup = mirror_path(root, settings.backup_manifest)
    if not backup.is_file():
        return False
    current = mirror_path(root, settings.root_manifest)
    current.unlink(missing_ok=True)
    backup.rename(current)
    return True


def scan_mirror_files(root: Path) -> set[str]:
    """Return every non-directory entry under ``root`` as a posix relative path.

    Symlinks count as entries whether or not their target exists; symlinked
    directories are listed but not descended into.
    """
    found: set[str] = set()
    for dirpath, dirs, files in os.walk(root):
        for name in dirs:
            full = Path(dirpath) / name
            if full.is_symlink():
                found.add(full.relative_to(root).as_posix())
        for name in files:
            full = Path(dirpath) / name
            if full.is_symlink() or full.is_file():
                found.add(full.relative_to(root).as_posix())
    return found
