"""Tests for the checksum algorithm registry."""

from __future__ import annotations

import hashlib

import pytest

from repocheck.exceptions import UnknownAlgorithmError
from repocheck.services.hash_registry import HashRegistry, default_registry, normalize_algorithm


class TestNormalizeAlgorithm:
    @pytest.mark.parametrize("name", ["sha256", "SHA256", "Sha-256", "sha_256", " SHA256 "])
    def test_spellings_collapse_to_one_key(self, name: str) -> None:
        assert normalize_algorithm(name) == "sha256"


class TestDefaultRegistry:
    def test_supports_common_repository_algorithms(self) -> None:
        registry = default_registry()
        for name in ("md5", "sha1", "sha256", "sha512", "SHA384"):
            assert registry.supports(name)

    def test_sha_is_an_alias_for_sha1(self) -> None:
        hasher = default_registry().create("sha")
        hasher.update(b"payload")
        assert hasher.hexdigest() == hashlib.sha1(b"payload").hexdigest()

    def test_variable_length_digests_are_excluded(self) -> None:
        assert not default_registry().supports("shake_128")

    def test_create_returns_fresh_objects(self) -> None:
        registry = default_registry()
        first = registry.create("sha256")
        first.update(b"dirty")
        second = registry.create("sha256")
        assert first is not second
        assert second.hexdigest() == hashlib.sha256(b"").hexdigest()

    def test_unknown_algorithm_raises(self) -> None:
        with pytest.raises(UnknownAlgorithmError, match="whirlpool-9000"):
            default_registry().create("whirlpool-9000")

    def test_unknown_algorithm_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            default_registry().create("nope")


class TestHashRegistry:
    def test_registry_is_isolated_from_source_mapping(self) -> None:
        constructors = {"MD5": hashlib.md5}
        registry = HashRegistry(constructors)
        constructors["sha256"] = hashlib.sha256
        assert registry.names() == ["md5"]
        assert not registry.supports("sha256")

    def test_registry_mapping_is_read_only(self) -> None:
        registry = HashRegistry({"md5": hashlib.md5})
        with pytest.raises(TypeError):
            registry._constructors["sha1"] = hashlib.sha1  # type: ignore[index]
