"""Mirror synchronization: verify every manifest entry and repair what is broken."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING
from urllib.parse import quote

from repocheck.config import Settings
from repocheck.exceptions import (
    FetchError,
    ManifestError,
    MissingManifestError,
    SourceError,
    StructuralError,
)
from repocheck.filesystem.manifest import (
    load_root_manifest,
    mirror_path,
    parse_package_list,
    read_manifest_bytes,
)
from repocheck.filesystem.mirror import (
    backup_root_manifest,
    normalize_source_url,
    read_source_url,
    restore_root_manifest,
    write_source_url,
)
from repocheck.services.fetch_service import Fetcher
from repocheck.services.hash_registry import default_registry
from repocheck.services.verify_service import (
    ByteCounter,
    CheckResult,
    FileVerifier,
    VerificationOutcome,
    verify_all,
)

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from repocheck.filesystem.manifest import FileDescriptor
    from repocheck.services.hash_registry import HashRegistry

    FetchProgress = Callable[[str, int, int | None], None]

logger = logging.getLogger(__name__)

# Passed as ``url`` to reuse the source recorded by the last explicit update.
RECORDED_SOURCE = ""


class ManifestLevel(StrEnum):
    """Which manifest a descriptor came from."""

    ROOT = "root"
    PACKAGES = "packages"


@dataclass
class FileResult:
    """What happened to one descriptor during a run."""

    level: ManifestLevel
    descriptor: FileDescriptor
    first: VerificationOutcome
    final: VerificationOutcome
    fetched: bool = False
    fetch_error: str | None = None
    policy_error: str | None = None

    @property
    def relative_path(self) -> str:
        return self.descriptor.relative_path

    @property
    def repaired(self) -> bool:
        return self.fetched and self.final.ok

    @property
    def ok(self) -> bool:
        return self.final.ok and self.fetch_error is None and self.policy_error is None


@dataclass
class SyncReport:
    """Outcome of a synchronization run."""

    results: list[FileResult] = field(default_factory=list)
    expected: set[str] = field(default_factory=set)
    fatal: str | None = None
    source_url: str | None = None
    bytes_processed: int = 0

    @property
    def failures(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    @property
    def success(self) -> bool:
        return self.fatal is None and self.failures == 0

    def __bool__(self) -> bool:
        return self.success


class MirrorSynchronizer:
    """Verifies a mirror against its manifests and repairs it from a source.

    The per-file protocol is ``ensure``; ``synchronize`` applies it to the
    root manifest and then to the package list named by the primary entry.
    Files are repaired at most once per run. ``cancel_event`` is handed to the
    fetcher, injected or not, and aborts the download in flight.
    """

    def __init__(
        self,
        root: Path,
        settings: Settings | None = None,
        *,
        registry: HashRegistry | None = None,
        fetcher: Fetcher | None = None,
        source_url: str | None = None,
        progress: FetchProgress | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.root = root
        self.settings = settings or Settings()
        self.counter = ByteCounter()
        self.verifier = FileVerifier(
            root,
            registry or default_registry(),
            buffer_size=self.settings.buffer_size,
            check_hash=self.settings.check_hash,
            counter=self.counter,
        )
        self.source_url = source_url
        self.progress = progress
        self.cancel_event = cancel_event
        self._fetcher = fetcher
        self._owns_fetcher = False
        if fetcher is not None and cancel_event is not None:
            fetcher.cancel_event = cancel_event

    def close(self) -> None:
        if self._owns_fetcher and self._fetcher is not None:
            self._fetcher.close()
            self._fetcher = None
            self._owns_fetcher = False

    def __enter__(self) -> MirrorSynchronizer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # -- per-file protocol -------------------------------------------------

    def ensure(
        self,
        descriptor: FileDescriptor,
        outcome: VerificationOutcome | None = None,
        level: ManifestLevel = ManifestLevel.ROOT,
    ) -> FileResult:
        """Verify one file and, if it is bad and a source is known, repair it.

        ``outcome`` may carry a verification already done for this run (by the
        worker pool); otherwise the file is verified here. Never raises for
        per-file problems: they are logged and reflected in the result.
        """
        first = outcome if outcome is not None else self.verifier.verify(descriptor)
        if first.ok:
            return FileResult(level, descriptor, first, first)

        rel = descriptor.relative_path
        if self.source_url is None or not first.repairable:
            logger.warning("%s", first.message)
            return FileResult(level, descriptor, first, first)

        if first.result is not CheckResult.NOT_EXIST:
            logger.warning("%s", first.message)
            try:
                mirror_path(self.root, rel).unlink(missing_ok=True)
            except OSError as exc:
                logger.error("Fatal: cannot remove bad file '%s': %s", rel, exc)
                return FileResult(level, descriptor, first, first, fetch_error=str(exc))

        logger.info("Downloading file '%s' ...", rel)
        try:
            self._fetch(rel)
        except FetchError as exc:
            label = "Fatal" if exc.fatal else "Error"
            logger.error("%s: could not repair '%s': %s", label, rel, exc)
            final = self.verifier.verify(descriptor)
            return FileResult(level, descriptor, first, final, fetched=True, fetch_error=str(exc))

        final = self.verifier.verify(descriptor)
        if not final.ok:
            logger.error("%s", final.message)
        return FileResult(level, descriptor, first, final, fetched=True)

    # -- manifest-level orchestration ---------------------------------------

    def synchronize(self, url: str | None = None) -> SyncReport:
        """Check the whole mirror, repairing from ``url`` when one is available.

        ``url`` is None for a local-only check, ``RECORDED_SOURCE`` to reuse the
        recorded source, or an explicit source URL that is then recorded.
        """
        report = SyncReport()
        try:
            self._synchronize(url, report)
        except StructuralError as exc:
            report.fatal = str(exc)
            logger.error("Fatal: %s", exc)
        report.bytes_processed = self.counter.total
        return report

    def _synchronize(self, url: str | None, report: SyncReport) -> None:
        settings = self.settings
        if not self.root.is_dir():
            msg = f"Mirror directory {self.root} does not exist"
            raise MissingManifestError(msg)

        self.source_url = self._resolve_source(url)
        report.source_url = self.source_url
        if self.source_url is not None:
            logger.info("Update from %s", self.source_url)

        report.expected.add(settings.source_marker)
        report.expected.add(settings.root_manifest)
        manifest_path = mirror_path(self.root, settings.root_manifest)
        if self.source_url is None and not manifest_path.is_file():
            msg = f"Main file '{settings.root_manifest}' does not exist"
            raise MissingManifestError(msg)
        if self.source_url is not None:
            self._refresh_root_manifest(report)

        manifest = load_root_manifest(
            self._read_manifest(settings.root_manifest), settings.primary_kind
        )
        root_results = self._check_level(manifest.descriptors, ManifestLevel.ROOT, report)

        primary_result = next(r for r in root_results if r.descriptor is manifest.primary)
        if not primary_result.ok:
            msg = f"Bad or absent primary file list '{manifest.primary_path}'"
            raise ManifestError(msg)

        logger.info("Checking %s files...", settings.package_kind)
        packages = parse_package_list(self._read_manifest(manifest.primary_path))
        self._check_level(packages, ManifestLevel.PACKAGES, report)

    def _check_level(
        self,
        descriptors: Sequence[FileDescriptor],
        level: ManifestLevel,
        report: SyncReport,
    ) -> list[FileResult]:
        outcomes = verify_all(self.verifier, descriptors, self.settings.workers)
        results: list[FileResult] = []
        for descriptor, outcome in zip(descriptors, outcomes, strict=True):
            report.expected.add(descriptor.relative_path)
            result = self.ensure(descriptor, outcome, level)
            if level is ManifestLevel.PACKAGES and descriptor.kind != self.settings.package_kind:
                result.policy_error = (
                    f"File '{descriptor.relative_path}' is of type {descriptor.kind!r}, "
                    f"not {self.settings.package_kind!r}."
                )
                logger.error("Error: %s", result.policy_error)
            results.append(result)
        report.results.extend(results)
        return results

    def _resolve_source(self, url: str | None) -> str | None:
        if url is None:
            return None
        if url == RECORDED_SOURCE:
            return read_source_url(self.root, self.settings)
        try:
            normalized = normalize_source_url(url)
        except ValueError as exc:
            raise SourceError(str(exc)) from exc
        write_source_url(self.root, self.settings, normalized)
        return normalized

    def _refresh_root_manifest(self, report: SyncReport) -> None:
        """Replace the root manifest with the remote copy, keeping a backup."""
        settings = self.settings
        backup = backup_root_manifest(self.root, settings)
        if backup is not None:
            report.expected.add(backup)
        logger.info("Downloading file '%s' ...", settings.root_manifest)
        try:
            self._fetch(settings.root_manifest)
        except FetchError as exc:
            if backup is not None and restore_root_manifest(self.root, settings):
                logger.error(
                    "Could not fetch '%s', using the previous copy: %s",
                    settings.root_manifest,
                    exc,
                )
                return
            msg = f"Main file '{settings.root_manifest}' could not be fetched: {exc}"
            raise MissingManifestError(msg) from exc

    def _read_manifest(self, relative_path: str) -> bytes:
        try:
            return read_manifest_bytes(mirror_path(self.root, relative_path))
        except FileNotFoundError:
            msg = f"Manifest '{relative_path}' does not exist"
            raise MissingManifestError(msg) from None
        except OSError as exc:
            msg = f"Cannot read manifest '{relative_path}': {exc}"
            raise ManifestError(msg) from exc

    def _fetch(self, relative_path: str) -> None:
        if self.source_url is None:
            msg = "No source URL configured"
            raise FetchError(msg)
        url = self.source_url + quote(relative_path, safe="/")
        progress = partial(self.progress, relative_path) if self.progress is not None else None
        self._get_fetcher().fetch(url, mirror_path(self.root, relative_path), progress)

    def _get_fetcher(self) -> Fetcher:
        if self._fetcher is None:
            self._fetcher = Fetcher(
                timeout=self.settings.fetch_timeout,
                counter=self.counter,
                cancel_event=self.cancel_event,
            )
            self._owns_fetcher = True
        return self._fetcher


def synchronize(
    root: Path,
    url: str | None = None,
    settings: Settings | None = None,
    *,
    progress: FetchProgress | None = None,
) -> SyncReport:
    """Run one synchronization of the mirror at ``root``."""
    with MirrorSynchronizer(root, settings, progress=progress) as synchronizer:
        return synchronizer.synchronize(url)
