"""Excess file detection: files under the mirror root that no manifest references."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from repocheck.filesystem.manifest import mirror_path
from repocheck.filesystem.mirror import scan_mirror_files

if TYPE_CHECKING:
    from collections.abc import Iterable, Set
    from pathlib import Path

logger = logging.getLogger(__name__)


def find_excess(root: Path, expected: Set[str]) -> list[str]:
    """Return the files present under ``root`` but absent from ``expected``, sorted."""
    return sorted(scan_mirror_files(root) - expected)


def remove_excess(root: Path, excess: Iterable[str]) -> list[str]:
    """Delete excess files and return the ones actually removed.

    Empty directories are left in place.
    """
    removed: list[str] = []
    for rel in excess:
        try:
            mirror_path(root, rel).unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.error("Could not remove excess file '%s': %s", rel, exc)
            continue
        logger.debug("Removed excess file %s", rel)
        removed.append(rel)
    return removed
