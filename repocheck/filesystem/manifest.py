"""Repository manifest parsing: repomd.xml and the primary package list."""

from __future__ import annotations

import bz2
import gzip
import lzma
import posixpath
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from repocheck.exceptions import ManifestError, PrimaryDescriptorError
from repocheck.services.hash_registry import normalize_algorithm

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

REPO_NAMESPACE = "http://linux.duke.edu/metadata/repo"
COMMON_NAMESPACE = "http://linux.duke.edu/metadata/common"

_DECOMPRESSORS: dict[str, Callable[[bytes], bytes]] = {
    ".gz": gzip.decompress,
    ".bz2": bz2.decompress,
    ".xz": lzma.decompress,
}


@dataclass(frozen=True)
class FileDescriptor:
    """One file entry from either manifest level.

    ``checksum_algorithm`` is stored normalized (see ``normalize_algorithm``)
    and ``checksum_value`` lowercased, so comparisons never depend on how a
    manifest spells them. ``expected_size`` is ``None`` when the manifest does
    not declare a size; ``0`` is a real, checked size.
    """

    kind: str
    checksum_algorithm: str
    checksum_value: str
    relative_path: str
    expected_size: int | None = None

    @classmethod
    def create(
        cls,
        kind: str,
        checksum_algorithm: str,
        checksum_value: str,
        relative_path: str,
        expected_size: int | None = None,
    ) -> FileDescriptor:
        """Build a descriptor, applying the checksum normalization rule."""
        return cls(
            kind=kind,
            checksum_algorithm=normalize_algorithm(checksum_algorithm),
            checksum_value=checksum_value.strip().lower(),
            relative_path=relative_path,
            expected_size=expected_size,
        )


def mirror_path(root: Path, relative_path: str) -> Path:
    """Join a repository-relative posix path onto a local mirror root."""
    return root.joinpath(*PurePosixPath(relative_path).parts)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _validate_relative_path(href: str) -> str:
    """Return ``href`` normalized, rejecting paths that leave the mirror root."""
    if not href or href.startswith("/") or "\\" in href:
        msg = f"Location href must be a relative posix path: {href!r}"
        raise ManifestError(msg)
    normalized = posixpath.normpath(href)
    if normalized == "." or normalized == ".." or normalized.startswith("../"):
        msg = f"Location href escapes the mirror root: {href!r}"
        raise ManifestError(msg)
    return normalized


def _parse_size(raw: str | None, path: str) -> int | None:
    if raw is None or not raw.strip():
        return None
    try:
        size = int(raw.strip())
    except ValueError:
        msg = f"Invalid size {raw!r} for {path}"
        raise ManifestError(msg) from None
    if size < 0:
        msg = f"Negative size {size} for {path}"
        raise ManifestError(msg)
    return size


def _parse_document(data: bytes, root_name: str) -> ET.Element:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        msg = f"Malformed manifest: {exc}"
        raise ManifestError(msg) from exc
    if _local_name(root.tag) != root_name:
        msg = f"Expected <{root_name}> document, got <{_local_name(root.tag)}>"
        raise ManifestError(msg)
    return root


def _parse_entry(entry: ET.Element, size_of: Callable[[ET.Element], str | None]) -> FileDescriptor:
    kind = entry.get("type")
    if kind is None:
        msg = f"<{_local_name(entry.tag)}> entry without a type attribute"
        raise ManifestError(msg)

    location = entry.find("{*}location")
    href = location.get("href") if location is not None else None
    if href is None:
        msg = f"<{_local_name(entry.tag)} type={kind!r}> entry without location href"
        raise ManifestError(msg)
    relative_path = _validate_relative_path(href)

    checksum = entry.find("{*}checksum")
    if checksum is None or checksum.get("type") is None:
        msg = f"Entry {relative_path} has no checksum or checksum type"
        raise ManifestError(msg)
    value = (checksum.text or "").strip()
    if not value:
        msg = f"Entry {relative_path} has an empty checksum"
        raise ManifestError(msg)

    return FileDescriptor.create(
        kind=kind,
        checksum_algorithm=checksum.get("type", ""),
        checksum_value=value,
        relative_path=relative_path,
        expected_size=_parse_size(size_of(entry), relative_path),
    )


def _parse_entries(
    root: ET.Element,
    entry_name: str,
    size_of: Callable[[ET.Element], str | None],
) -> list[FileDescriptor]:
    descriptors: list[FileDescriptor] = []
    seen: set[str] = set()
    for entry in root.findall(f"{{*}}{entry_name}"):
        descriptor = _parse_entry(entry, size_of)
        if descriptor.relative_path in seen:
            msg = f"Duplicate location in manifest: {descriptor.relative_path}"
            raise ManifestError(msg)
        seen.add(descriptor.relative_path)
        descriptors.append(descriptor)
    return descriptors


def _size_element_text(entry: ET.Element) -> str | None:
    size = entry.find("{*}size")
    return size.text if size is not None else None


def _size_package_attribute(entry: ET.Element) -> str | None:
    size = entry.find("{*}size")
    return size.get("package") if size is not None else None


def parse_root_manifest(data: bytes) -> list[FileDescriptor]:
    """Parse repomd.xml into descriptors, in document order."""
    root = _parse_document(data, "repomd")
    return _parse_entries(root, "data", _size_element_text)


def parse_package_list(data: bytes) -> list[FileDescriptor]:
    """Parse a primary package list into descriptors, in document order."""
    root = _parse_document(data, "metadata")
    return _parse_entries(root, "package", _size_package_attribute)


def find_primary(descriptors: Sequence[FileDescriptor], kind: str = "primary") -> FileDescriptor:
    """Return the single descriptor of the given kind.

    Raises PrimaryDescriptorError when there is none or more than one.
    """
    matches = [d for d in descriptors if d.kind == kind]
    if not matches:
        msg = f"Root manifest has no {kind!r} entry"
        raise PrimaryDescriptorError(msg)
    if len(matches) > 1:
        paths = ", ".join(d.relative_path for d in matches)
        msg = f"Root manifest has {len(matches)} {kind!r} entries: {paths}"
        raise PrimaryDescriptorError(msg)
    return matches[0]


@dataclass(frozen=True)
class RootManifest:
    """Parsed repomd.xml together with its single primary entry."""

    descriptors: list[FileDescriptor]
    primary: FileDescriptor

    @property
    def primary_path(self) -> str:
        """Relative path of the package list."""
        return self.primary.relative_path


def load_root_manifest(data: bytes, primary_kind: str = "primary") -> RootManifest:
    """Parse repomd.xml and locate its primary entry.

    Raises ManifestError for a malformed document and PrimaryDescriptorError
    when the primary entry is missing or ambiguous.
    """
    descriptors = parse_root_manifest(data)
    return RootManifest(descriptors, find_primary(descriptors, primary_kind))


def read_manifest_bytes(path: Path) -> bytes:
    """Read a manifest file, decompressing it when its suffix says so."""
    raw = path.read_bytes()
    decompress = _DECOMPRESSORS.get(path.suffix.lower())
    if decompress is None:
        return raw
    try:
        return decompress(raw)
    except (OSError, EOFError, lzma.LZMAError) as exc:
        msg = f"Cannot decompress {path.name}: {exc}"
        raise ManifestError(msg) from exc
