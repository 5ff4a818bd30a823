"""File verification: existence, size and checksum of one descriptor on disk."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from repocheck.filesystem.manifest import mirror_path

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from repocheck.filesystem.manifest import FileDescriptor
    from repocheck.services.hash_registry import HashRegistry

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1 << 20


class CheckResult(StrEnum):
    """Outcome of a single file check, in the order the checks run."""

    NOT_EXIST = "not_exist"
    BAD_SIZE = "bad_size"
    BAD_HASH = "bad_hash"
    OK = "ok"


@dataclass(frozen=True)
class VerificationOutcome:
    """Complete result of verifying one descriptor.

    ``repairable`` is False when a fresh copy of the file would fail the same
    way, e.g. an unsupported checksum algorithm.
    """

    result: CheckResult
    relative_path: str
    message: str = ""
    actual_size: int | None = None
    actual_digest: str | None = None
    repairable: bool = True

    @property
    def ok(self) -> bool:
        return self.result is CheckResult.OK


class ByteCounter:
    """Thread-safe running total of bytes processed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total = 0

    def add(self, count: int) -> None:
        with self._lock:
            self._total += count

    @property
    def total(self) -> int:
        with self._lock:
            return self._total


class FileVerifier:
    """Checks descriptors against the files under a mirror root.

    Checks run in a fixed order and stop at the first failure: a missing file
    is never sized, and a wrong-sized file is never hashed. Each call streams
    the file through its own buffer of ``buffer_size`` bytes, so one verifier
    can serve several threads at once.
    """

    def __init__(
        self,
        root: Path,
        registry: HashRegistry,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        check_hash: bool = True,
        counter: ByteCounter | None = None,
    ) -> None:
        if buffer_size < 1:
            msg = f"buffer_size must be positive, got {buffer_size}"
            raise ValueError(msg)
        self.root = root
        self.registry = registry
        self.buffer_size = buffer_size
        self.check_hash = check_hash
        self.counter = counter if counter is not None else ByteCounter()

    def verify(self, descriptor: FileDescriptor) -> VerificationOutcome:
        rel = descriptor.relative_path
        path = mirror_path(self.root, rel)
        if not path.is_file():
            return VerificationOutcome(
                CheckResult.NOT_EXIST, rel, f"File '{rel}' does not exist."
            )

        size = path.stat().st_size
        if descriptor.expected_size is not None and size != descriptor.expected_size:
            return VerificationOutcome(
                CheckResult.BAD_SIZE,
                rel,
                f"File '{rel}' size {size} mismatches, needs {descriptor.expected_size}.",
                actual_size=size,
            )

        if not self.check_hash:
            return VerificationOutcome(CheckResult.OK, rel, actual_size=size)

        algorithm = descriptor.checksum_algorithm
        if not self.registry.supports(algorithm):
            supported = ", ".join(self.registry.names())
            return VerificationOutcome(
                CheckResult.BAD_HASH,
                rel,
                f"File '{rel}' uses unsupported checksum algorithm {algorithm!r} "
                f"(supported: {supported}).",
                actual_size=size,
                repairable=False,
            )

        try:
            digest = self._digest(path, algorithm)
        except OSError as exc:
            return VerificationOutcome(
                CheckResult.BAD_HASH, rel, f"File '{rel}' cannot be read: {exc}", actual_size=size
            )

        if digest != descriptor.checksum_value:
            return VerificationOutcome(
                CheckResult.BAD_HASH,
                rel,
                f"File '{rel}' {descriptor.checksum_algorithm}-hash {digest} "
                f"mismatches needed {descriptor.checksum_value}.",
                actual_size=size,
                actual_digest=digest,
            )
        return VerificationOutcome(CheckResult.OK, rel, actual_size=size, actual_digest=digest)

    def _digest(self, path: Path, algorithm: str) -> str:
        hasher = self.registry.create(algorithm)
        buffer = bytearray(self.buffer_size)
        view = memoryview(buffer)
        with path.open("rb", buffering=0) as f:
            while True:
                count = f.readinto(buffer)
                if not count:
                    break
                hasher.update(view[:count])
                self.counter.add(count)
        return hasher.hexdigest().lower()


def verify_all(
    verifier: FileVerifier,
    descriptors: Sequence[FileDescriptor],
    workers: int = 1,
) -> list[VerificationOutcome]:
    """Verify descriptors, optionally on a bounded thread pool.

    Outcomes are returned in the order of ``descriptors`` regardless of which
    worker finished first.
    """
    if workers <= 1 or len(descriptors) <= 1:
        return [verifier.verify(d) for d in descriptors]
    logger.debug("Verifying %d files with %d workers", len(descriptors), workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="repocheck-verify") as pool:
        return list(pool.map(verifier.verify, descriptors))
