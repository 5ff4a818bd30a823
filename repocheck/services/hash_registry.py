"""Checksum algorithm registry: maps algorithm names to streaming hash factories."""

from __future__ import annotations

import hashlib
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol

from repocheck.exceptions import UnknownAlgorithmError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping


class Hasher(Protocol):
    """Incremental hash object, as returned by the :mod:`hashlib` constructors."""

    def update(self, data: bytes, /) -> None: ...

    def hexdigest(self) -> str: ...


# createrepo writes ``sha`` for SHA-1 in older repositories.
_ALIASES: dict[str, str] = {"sha": "sha1"}


def normalize_algorithm(name: str) -> str:
    """Return the canonical registry key for an algorithm name.

    ``SHA-256``, ``sha_256`` and ``SHA256`` all map to ``sha256``.
    """
    return name.strip().lower().replace("-", "").replace("_", "")


class HashRegistry:
    """Immutable mapping of normalized algorithm names to hash constructors.

    ``create`` returns a fresh hash object on every call, so a single registry
    can be shared by any number of verification threads.
    """

    def __init__(self, constructors: Mapping[str, Callable[[], Hasher]]) -> None:
        normalized = {normalize_algorithm(name): ctor for name, ctor in constructors.items()}
        self._constructors: Mapping[str, Callable[[], Hasher]] = MappingProxyType(normalized)

    def supports(self, name: str) -> bool:
        return normalize_algorithm(name) in self._constructors

    def names(self) -> list[str]:
        """Return the registered algorithm names, sorted."""
        return sorted(self._constructors)

    def create(self, name: str) -> Hasher:
        """Create a new hash object for ``name``.

        Raises UnknownAlgorithmError if no constructor is registered.
        """
        ctor = self._constructors.get(normalize_algorithm(name))
        if ctor is None:
            raise UnknownAlgorithmError(name)
        return ctor()


def _hashlib_constructor(name: str) -> Callable[[], Hasher]:
    def _create() -> Hasher:
        return hashlib.new(name)

    return _create


def default_registry() -> HashRegistry:
    """Build a registry with every fixed-length algorithm hashlib guarantees."""
    constructors: dict[str, Callable[[], Hasher]] = {}
    for name in hashlib.algorithms_guaranteed:
        if name.startswith("shake_"):
            continue
        constructors[name] = _hashlib_constructor(name)
    for alias, target in _ALIASES.items():
        constructors[alias] = constructors[target]
    return HashRegistry(constructors)
