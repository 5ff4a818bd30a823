"""Exception types.

Convention:
- ``StructuralError`` and its subclasses are fatal for a synchronization run.
  ``MirrorSynchronizer.synchronize`` catches them once and reports the run as
  failed without any further file checks.
- ``FetchError`` is a per-file problem. It never escapes the per-file repair
  protocol; the file is counted as a failure and the run continues.
"""

from __future__ import annotations


class RepoCheckError(Exception):
    """Base class for all repocheck errors."""


class StructuralError(RepoCheckError):
    """The mirror cannot be evaluated at all."""


class ManifestError(StructuralError):
    """A manifest document is malformed or missing required fields."""


class PrimaryDescriptorError(StructuralError):
    """The root manifest has no primary descriptor, or more than one."""


class MissingManifestError(StructuralError):
    """A manifest is absent locally and cannot be fetched."""


class SourceError(StructuralError):
    """The remote source URL is unusable or was never recorded."""


class UnknownAlgorithmError(RepoCheckError, ValueError):
    """A checksum algorithm name has no registered implementation."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown checksum algorithm: {name!r}")
        self.name = name


class FetchError(RepoCheckError):
    """A file could not be retrieved from the remote source.

    ``fatal`` separates local failures (the destination could not be written)
    from transient ones (network errors, HTTP errors, timeouts, cancellation).
    """

    def __init__(self, message: str, *, fatal: bool = False) -> None:
        super().__init__(message)
        self.fatal = fatal
