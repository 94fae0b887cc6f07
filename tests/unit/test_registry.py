"""Tests for registry backends — blob addressing, create-once records, outages."""

from __future__ import annotations

from pathlib import Path

import pytest

from layerforge.core.errors import ArtifactNotFoundError, RegistryUnavailableError
from layerforge.core.hasher import sha256_hex
from layerforge.core.registry import (
    ArtifactIntegrityError,
    FilesystemRegistry,
    InMemoryRegistry,
    RegistryBackend,
)


@pytest.fixture(params=["memory", "filesystem"])
def registry(request, tmp_dir: Path) -> RegistryBackend:
    if request.param == "memory":
        return InMemoryRegistry()
    return FilesystemRegistry(tmp_dir / "registry")


class TestRegistryContract:
    def test_satisfies_protocol(self, registry: RegistryBackend):
        assert isinstance(registry, RegistryBackend)

    def test_blob_round_trip(self, registry: RegistryBackend):
        digest = registry.put_blob(b"layer bytes")
        assert digest == sha256_hex(b"layer bytes")
        assert registry.get_blob(digest) == b"layer bytes"
        assert registry.has_blob(digest) is True

    def test_blob_put_is_idempotent(self, registry: RegistryBackend):
        assert registry.put_blob(b"same") == registry.put_blob(b"same")

    def test_prefixed_digest_accepted(self, registry: RegistryBackend):
        digest = registry.put_blob(b"prefixed")
        assert registry.get_blob(f"sha256:{digest}") == b"prefixed"

    def test_missing_blob(self, registry: RegistryBackend):
        with pytest.raises(ArtifactNotFoundError):
            registry.get_blob("0" * 64)
        assert registry.has_blob("0" * 64) is False

    def test_missing_record_is_none(self, registry: RegistryBackend):
        assert registry.read_record("main", "abc") is None

    def test_create_record_once(self, registry: RegistryBackend):
        assert registry.create_record("main", "fp1", b'{"v":1}') is None
        existing = registry.create_record("main", "fp1", b'{"v":2}')
        assert existing == b'{"v":1}'
        assert registry.read_record("main", "fp1") == b'{"v":1}'

    def test_records_are_scoped(self, registry: RegistryBackend):
        registry.create_record("team-a", "fp", b"a")
        assert registry.read_record("team-b", "fp") is None

    def test_list_records(self, registry: RegistryBackend):
        registry.create_record("main", "fp2", b"x")
        registry.create_record("main", "fp1", b"x")
        registry.create_record("feature/login", "fp3", b"x")
        assert registry.list_records() == [
            ("feature/login", "fp3"),
            ("main", "fp1"),
            ("main", "fp2"),
        ]
        assert registry.list_records("main") == [("main", "fp1"), ("main", "fp2")]
        assert registry.list_records("nope") == []


class TestFilesystemRegistry:
    def test_blob_layout(self, fs_registry: FilesystemRegistry):
        digest = fs_registry.put_blob(b"layout")
        expected = fs_registry.base_path / "blobs" / digest[:2] / digest[2:4] / f"{digest}.dat"
        assert expected.is_file()

    def test_scope_with_slash_is_one_directory(self, fs_registry: FilesystemRegistry):
        fs_registry.create_record("feature/x", "fp", b"{}")
        scope_dirs = [p.name for p in (fs_registry.base_path / "records").iterdir()]
        assert scope_dirs == ["feature%2Fx"]

    def test_no_temp_files_left(self, fs_registry: FilesystemRegistry):
        fs_registry.create_record("main", "fp", b"{}")
        fs_registry.create_record("main", "fp", b"{}")
        leftovers = list((fs_registry.base_path / "records").rglob(".tmp-*"))
        assert leftovers == []

    def test_tampered_blob_detected(self, fs_registry: FilesystemRegistry):
        digest = fs_registry.put_blob(b"original")
        path = fs_registry.base_path / "blobs" / digest[:2] / digest[2:4] / f"{digest}.dat"
        path.write_bytes(b"tampered")
        with pytest.raises(ArtifactIntegrityError):
            fs_registry.get_blob(digest)

    def test_unusable_base_path(self, tmp_dir: Path):
        blocker = tmp_dir / "file"
        blocker.write_text("not a directory")
        with pytest.raises(RegistryUnavailableError):
            FilesystemRegistry(blocker / "registry")


class TestInMemoryRegistry:
    def test_unavailable_raises(self, memory_registry: InMemoryRegistry):
        memory_registry.available = False
        with pytest.raises(RegistryUnavailableError) as excinfo:
            memory_registry.read_record("main", "fp")
        assert excinfo.value.retryable is True

    def test_calls_recorded(self, memory_registry: InMemoryRegistry):
        memory_registry.put_blob(b"x")
        memory_registry.read_record("main", "fp")
        assert memory_registry.calls == ["put_blob", "read_record"]
