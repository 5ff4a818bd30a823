"""Shared test fixtures for repocheck."""

from __future__ import annotations

import gzip
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from xml.sax.saxutils import escape, quoteattr

import httpx
import pytest

from repocheck.config import Settings
from repocheck.filesystem.manifest import COMMON_NAMESPACE, REPO_NAMESPACE, mirror_path
from repocheck.services.fetch_service import Fetcher
from repocheck.services.hash_registry import default_registry

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

REMOTE_URL = "http://mirror.test/repo/"
ROOT_MANIFEST = "repodata/repomd.xml"

_AUTO = -1


def digest(data: bytes, algorithm: str = "sha256") -> str:
    """Reference digest of ``data``."""
    hasher = default_registry().create(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


@dataclass
class RepoFile:
    """A manifest entry together with the bytes it describes."""

    kind: str
    href: str
    content: bytes
    algorithm: str = "sha256"
    checksum: str | None = None
    size: int | None = _AUTO

    @property
    def declared_checksum(self) -> str:
        return self.checksum if self.checksum is not None else digest(self.content, self.algorithm)

    @property
    def declared_size(self) -> int | None:
        return len(self.content) if self.size == _AUTO else self.size


def repomd_xml(entries: Iterable[RepoFile]) -> bytes:
    """Render a repomd.xml document for ``entries``."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>\n',
        f'<repomd xmlns="{REPO_NAMESPACE}" xmlns:rpm="http://linux.duke.edu/metadata/rpm">\n',
        "  <revision>1700000000</revision>\n",
    ]
    for entry in entries:
        parts.append(f"  <data type={quoteattr(entry.kind)}>\n")
        parts.append(
            f"    <checksum type={quoteattr(entry.algorithm)}>"
            f"{escape(entry.declared_checksum)}</checksum>\n"
        )
        parts.append(f'    <open-checksum type="sha256">{"0" * 64}</open-checksum>\n')
        parts.append(f"    <location href={quoteattr(entry.href)}/>\n")
        parts.append("    <timestamp>1700000000</timestamp>\n")
        if entry.declared_size is not None:
            parts.append(f"    <size>{entry.declared_size}</size>\n")
        parts.append("  </data>\n")
    parts.append("</repomd>\n")
    return "".join(parts).encode("utf-8")


def primary_xml(packages: Iterable[RepoFile], pad_to: int | None = None) -> bytes:
    """Render a primary package list for ``packages``.

    ``pad_to`` appends trailing whitespace so the document has an exact size.
    """
    packages = list(packages)
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>\n',
        f'<metadata xmlns="{COMMON_NAMESPACE}" '
        f'xmlns:rpm="http://linux.duke.edu/metadata/rpm" packages="{len(packages)}">\n',
    ]
    for index, package in enumerate(packages):
        size = package.declared_size
        size_attr = f' package="{size}"' if size is not None else ""
        parts.append(f"<package type={quoteattr(package.kind)}>\n")
        parts.append(f"  <name>pkg{index}</name>\n")
        parts.append(
            f"  <checksum type={quoteattr(package.algorithm)} pkgid=\"YES\">"
            f"{escape(package.declared_checksum)}</checksum>\n"
        )
        parts.append(f'  <size{size_attr} installed="1" archive="1"/>\n')
        parts.append(f"  <location href={quoteattr(package.href)}/>\n")
        parts.append("  <format><rpm:license>MIT</rpm:license></format>\n")
        parts.append("</package>\n")
    parts.append("</metadata>\n")
    data = "".join(parts).encode("utf-8")
    if pad_to is not None:
        assert len(data) <= pad_to, f"primary list is {len(data)} bytes, cannot pad to {pad_to}"
        data += b" " * (pad_to - len(data))
    return data


@dataclass
class RepoLayout:
    """A complete repository held in memory as relative path -> bytes."""

    packages: list[RepoFile]
    primary_href: str = "repodata/primary.xml"
    root_entries: list[RepoFile] = field(default_factory=list)
    primary_pad_to: int | None = None
    primaries: int = 1
    files: dict[str, bytes] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        listing = primary_xml(self.packages, pad_to=self.primary_pad_to)
        if self.primary_href.endswith(".gz"):
            listing = gzip.compress(listing)
        self.primary = RepoFile("primary", self.primary_href, listing)
        entries = [self.primary]
        for extra in range(1, self.primaries):
            duplicate = RepoFile("primary", f"repodata/primary-{extra}.xml", listing)
            entries.append(duplicate)
            self.files[duplicate.href] = listing
        entries.extend(self.root_entries)
        self.files[ROOT_MANIFEST] = repomd_xml(entries)
        self.files[self.primary_href] = listing
        for entry in self.root_entries:
            self.files[entry.href] = entry.content
        for package in self.packages:
            self.files[package.href] = package.content

    def write_to(self, root: Path, *, skip: Iterable[str] = ()) -> Path:
        skipped = set(skip)
        for rel, data in self.files.items():
            if rel in skipped:
                continue
            write_file(root, rel, data)
        return root


def write_file(root: Path, rel: str, data: bytes) -> Path:
    path = mirror_path(root, rel)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


class RemoteRepo:
    """Fake HTTP source serving a dict of files under ``REMOTE_URL``."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self.files: dict[str, bytes] = dict(files or {})
        self.requests: list[str] = []
        self.fail_with: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        rel = request.url.path.removeprefix("/repo/")
        self.requests.append(rel)
        if self.fail_with is not None:
            raise self.fail_with
        if rel not in self.files:
            return httpx.Response(404, content=b"not found")
        return httpx.Response(200, content=self.files[rel])

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def fetcher(self, **kwargs: object) -> Fetcher:
        return Fetcher(self.client(), **kwargs)  # type: ignore[arg-type]


@pytest.fixture
def mirror_root(tmp_path: Path) -> Path:
    """Empty mirror root directory."""
    root = tmp_path / "mirror"
    root.mkdir()
    return root


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the environment and any .env file."""
    return Settings(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture
def remote() -> RemoteRepo:
    return RemoteRepo()


@pytest.fixture
def scenario_layout() -> RepoLayout:
    """Root manifest pointing at list.xml (512 bytes) listing pkgs/a.bin (1024 bytes)."""
    package = RepoFile("rpm", "pkgs/a.bin", bytes(range(256)) * 4)
    return RepoLayout([package], primary_href="list.xml", primary_pad_to=512)
