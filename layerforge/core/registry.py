"""Registry backends — where layer bytes actually live.

The layer cache never stores bytes itself; it talks to a ``RegistryBackend``
that holds two kinds of objects:

- **blobs**, addressed by the SHA-256 of their bytes (idempotent writes), and
- **records**, small JSON documents keyed by ``(scope, fingerprint)`` that
  are created at most once (create-if-absent).

A record becomes visible in a single step, after all blobs it references have
been written, which is what makes a publish all-or-nothing for readers.

Filesystem layout::

    {base}/blobs/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
    {base}/records/{encoded scope}/{fingerprint}.json
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from layerforge.core.errors import ArtifactNotFoundError, RegistryUnavailableError
from layerforge.core.hasher import (
    decode_path_component,
    encode_path_component,
    sha256_hex,
    strip_prefix,
)

logger = logging.getLogger(__name__)

_HEX_DIGITS = frozenset("0123456789abcdef")


class ArtifactIntegrityError(RuntimeError):
    """Raised when a stored blob's hash does not match its address."""


@runtime_checkable
class RegistryBackend(Protocol):
    """Storage contract used by ``LayerCacheStore``.

    Implementations raise ``RegistryUnavailableError`` when they cannot reach
    their storage, and ``ArtifactNotFoundError`` for missing blobs.
    """

    def put_blob(self, data: bytes) -> str:
        """Store *data* and return its SHA-256 hex digest. Idempotent."""
        ...

    def get_blob(self, digest: str) -> bytes:
        """Return the bytes stored under *digest*."""
        ...

    def has_blob(self, digest: str) -> bool:
        ...

    def read_record(self, scope: str, fingerprint: str) -> bytes | None:
        """Return the record bytes, or ``None`` if no record exists."""
        ...

    def create_record(self, scope: str, fingerprint: str, data: bytes) -> bytes | None:
        """Atomically create a record if absent.

        Returns ``None`` if this call created it, otherwise the bytes of the
        record that already exists (which are left untouched).
        """
        ...

    def list_records(self, scope: str | None = None) -> list[tuple[str, str]]:
        """Return ``(scope, fingerprint)`` pairs, sorted."""
        ...


# ---------------------------------------------------------------------------
# Filesystem registry
# ---------------------------------------------------------------------------


class FilesystemRegistry:
    """Registry on a (possibly shared or network-mounted) directory.

    Blob writes go through a temporary file and ``os.replace``; record
    creation hard-links a fully written temporary file into place, which
    fails if the record already exists. Both are atomic on POSIX filesystems.

    Parameters
    ----------
    base_path:
        Root directory of the registry. Created if missing.
    """

    def __init__(self, base_path: Path | str) -> None:
        self._base = Path(base_path)
        try:
            (self._base / "blobs").mkdir(parents=True, exist_ok=True)
            (self._base / "records").mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RegistryUnavailableError(
                f"Registry at {self._base} is not usable: {exc}"
            ) from exc

    @property
    def base_path(self) -> Path:
        return self._base

    def _blob_path(self, digest: str) -> Path:
        if len(digest) != 64 or not set(digest) <= _HEX_DIGITS:
            raise ArtifactIntegrityError(f"Malformed blob digest {digest!r}")
        return self._base / "blobs" / digest[:2] / digest[2:4] / f"{digest}.dat"

    def _scope_dir(self, scope: str) -> Path:
        return self._base / "records" / encode_path_component(scope)

    def _record_path(self, scope: str, fingerprint: str) -> Path:
        return self._scope_dir(scope) / f"{encode_path_component(fingerprint)}.json"

    @staticmethod
    def _write_temp(directory: Path, data: bytes) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp-")
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        return Path(tmp)

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def put_blob(self, data: bytes) -> str:
        digest = sha256_hex(data)
        path = self._blob_path(digest)
        try:
            if path.exists():
                if sha256_hex(path.read_bytes()) != digest:
                    raise ArtifactIntegrityError(
                        f"Existing blob at {digest} failed integrity check"
                    )
                return digest
            tmp = self._write_temp(path.parent, data)
            os.replace(tmp, path)
        except OSError as exc:
            raise RegistryUnavailableError(f"Failed to write blob {digest}: {exc}") from exc
        return digest

    def get_blob(self, digest: str) -> bytes:
        digest = strip_prefix(digest)
        path = self._blob_path(digest)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Blob not found: {digest}") from None
        except OSError as exc:
            raise RegistryUnavailableError(f"Failed to read blob {digest}: {exc}") from exc
        if sha256_hex(data) != digest:
            raise ArtifactIntegrityError(f"Blob {digest} failed integrity check")
        return data

    def has_blob(self, digest: str) -> bool:
        try:
            return self._blob_path(strip_prefix(digest)).exists()
        except OSError as exc:
            raise RegistryUnavailableError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def read_record(self, scope: str, fingerprint: str) -> bytes | None:
        path = self._record_path(scope, fingerprint)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise RegistryUnavailableError(
                f"Failed to read record {scope}/{fingerprint}: {exc}"
            ) from exc

    def create_record(self, scope: str, fingerprint: str, data: bytes) -> bytes | None:
        path = self._record_path(scope, fingerprint)
        try:
            tmp = self._write_temp(path.parent, data)
            try:
                os.link(tmp, path)
            except FileExistsError:
                logger.debug("Record %s/%s already exists", scope, fingerprint)
                return path.read_bytes()
            finally:
                tmp.unlink(missing_ok=True)
        except OSError as exc:
            raise RegistryUnavailableError(
                f"Failed to create record {scope}/{fingerprint}: {exc}"
            ) from exc
        return None

    def list_records(self, scope: str | None = None) -> list[tuple[str, str]]:
        records_root = self._base / "records"
        try:
            scope_dirs = (
                [self._scope_dir(scope)]
                if scope is not None
                else [p for p in records_root.iterdir() if p.is_dir()]
            )
            found: list[tuple[str, str]] = []
            for scope_dir in scope_dirs:
                if not scope_dir.is_dir():
                    continue
                for record in scope_dir.glob("*.json"):
                    found.append(
                        (decode_path_component(scope_dir.name), decode_path_component(record.stem))
                    )
        except OSError as exc:
            raise RegistryUnavailableError(f"Failed to list records: {exc}") from exc
        return sorted(found)


# ---------------------------------------------------------------------------
# In-memory registry
# ---------------------------------------------------------------------------


class InMemoryRegistry:
    """Thread-safe in-process registry, used as a fake in tests and embedding.

    Set ``available = False`` to simulate an unreachable backend.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._blobs: dict[str, bytes] = {}
        self._records: dict[tuple[str, str], bytes] = {}
        self.available = True
        self.calls: list[str] = []

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if not self.available:
            raise RegistryUnavailableError(f"In-memory registry unavailable ({op})")

    def put_blob(self, data: bytes) -> str:
        self._check("put_blob")
        digest = sha256_hex(data)
        with self._lock:
            stored = self._blobs.setdefault(digest, bytes(data))
        if sha256_hex(stored) != digest:
            raise ArtifactIntegrityError(f"Existing blob at {digest} failed integrity check")
        return digest

    def get_blob(self, digest: str) -> bytes:
        self._check("get_blob")
        digest = strip_prefix(digest)
        with self._lock:
            try:
                return self._blobs[digest]
            except KeyError:
                raise ArtifactNotFoundError(f"Blob not found: {digest}") from None

    def has_blob(self, digest: str) -> bool:
        self._check("has_blob")
        with self._lock:
            return strip_prefix(digest) in self._blobs

    def read_record(self, scope: str, fingerprint: str) -> bytes | None:
        self._check("read_record")
        with self._lock:
            return self._records.get((scope, fingerprint))

    def create_record(self, scope: str, fingerprint: str, data: bytes) -> bytes | None:
        self._check("create_record")
        with self._lock:
            existing = self._records.get((scope, fingerprint))
            if existing is not None:
                return existing
            self._records[(scope, fingerprint)] = bytes(data)
            return None

    def list_records(self, scope: str | None = None) -> list[tuple[str, str]]:
        self._check("list_records")
        with self._lock:
            keys = list(self._records)
        return sorted(k for k in keys if scope is None or k[0] == scope)

    # Test helper: overwrite a stored blob to simulate bit rot.
    def corrupt_blob(self, digest: str, data: bytes) -> None:
        with self._lock:
            self._blobs[strip_prefix(digest)] = data
