"""Layer cache store — fingerprint-keyed dependency layers in a registry.

Contract:

- ``exists`` answers from the registry; an outage raises
  ``RegistryUnavailableError`` and is never reported as a miss.
- ``fetch`` returns the published layer or raises ``ArtifactNotFoundError``.
- ``publish`` is content-addressed and create-once: the first successful
  publish of a key is authoritative, an identical re-publish is a no-op and a
  different one is ``CacheCorruptionError``.
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, ConfigDict, ValidationError

from layerforge.core.errors import (
    ArtifactNotFoundError,
    CacheCorruptionError,
)
from layerforge.core.fingerprint import validate_scope
from layerforge.core.hasher import canonical_json_bytes, sha256_hex
from layerforge.core.registry import ArtifactIntegrityError, RegistryBackend
from layerforge.models.artifacts import ArtifactBundle, ArtifactRef, CacheEntry

logger = logging.getLogger(__name__)


class CachedLayer(BaseModel):
    """A fetched cache entry together with its materialized file tree."""

    model_config = ConfigDict(frozen=True)

    entry: CacheEntry
    bundle: ArtifactBundle

    @property
    def ref(self) -> ArtifactRef:
        return self.entry.artifact


class LayerCacheStore:
    """Maps ``(fingerprint, scope)`` to immutable dependency layers.

    Parameters
    ----------
    registry:
        The backend holding blobs and entry records.
    """

    def __init__(self, registry: RegistryBackend) -> None:
        self._registry = registry

    @property
    def registry(self) -> RegistryBackend:
        return self._registry

    # ------------------------------------------------------------------
    # Record encoding
    # ------------------------------------------------------------------

    @staticmethod
    def _encode(entry: CacheEntry) -> bytes:
        return canonical_json_bytes(entry.model_dump(mode="json"))

    @staticmethod
    def _decode(data: bytes, *, fingerprint: str, scope: str) -> CacheEntry:
        try:
            return CacheEntry.model_validate(json.loads(data))
        except (ValueError, ValidationError) as exc:
            raise CacheCorruptionError(
                f"Unreadable cache record {scope}/{fingerprint}: {exc}",
                fingerprint=fingerprint,
                scope=scope,
            ) from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def exists(self, fingerprint: str, scope: str) -> bool:
        """Return True if a published entry exists for the key."""
        scope = validate_scope(scope)
        return self._registry.read_record(scope, fingerprint) is not None

    def lookup(self, fingerprint: str, scope: str) -> CacheEntry | None:
        """Return the entry metadata without downloading any blobs."""
        scope = validate_scope(scope)
        data = self._registry.read_record(scope, fingerprint)
        if data is None:
            return None
        return self._decode(data, fingerprint=fingerprint, scope=scope)

    def entries(self, scope: str | None = None) -> list[CacheEntry]:
        """Return every published entry, optionally restricted to one scope."""
        if scope is not None:
            scope = validate_scope(scope)
        found: list[CacheEntry] = []
        for entry_scope, fp in self._registry.list_records(scope):
            entry = self.lookup(fp, entry_scope)
            if entry is not None:
                found.append(entry)
        return found

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(self, fingerprint: str, scope: str) -> CachedLayer:
        """Download a published layer and verify it against its record."""
        entry = self.lookup(fingerprint, scope)
        if entry is None:
            raise ArtifactNotFoundError(
                f"No cache entry for fingerprint {fingerprint} in scope {scope!r}"
            )

        files: dict[str, bytes] = {}
        for path, digest in entry.tree.items():
            try:
                data = self._registry.get_blob(digest)
            except (ArtifactNotFoundError, ArtifactIntegrityError) as exc:
                raise self._corruption(entry, f"blob {digest} for {path}: {exc}") from exc
            if sha256_hex(data) != digest:
                raise self._corruption(entry, f"blob {digest} for {path} failed integrity check")
            files[path] = data

        bundle = ArtifactBundle(files=files)
        if bundle.digest != entry.artifact.content_address:
            raise self._corruption(entry, "reassembled tree does not match its content address")

        logger.info(
            "Fetched layer %s/%s (%d files)", entry.scope, fingerprint, len(bundle)
        )
        return CachedLayer(entry=entry, bundle=bundle)

    @staticmethod
    def _corruption(entry: CacheEntry, detail: str) -> CacheCorruptionError:
        message = f"Cache entry {entry.scope}/{entry.fingerprint} is corrupt: {detail}"
        logger.critical(message)
        return CacheCorruptionError(
            message,
            fingerprint=entry.fingerprint,
            scope=entry.scope,
            existing=entry.artifact.content_address,
        )

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(
        self,
        fingerprint: str,
        scope: str,
        bundle: ArtifactBundle,
        *,
        stage: str = "",
    ) -> CacheEntry:
        """Publish *bundle* under ``(fingerprint, scope)``.

        Blobs are uploaded first and the entry record is created last, so
        readers never see a partially published layer.
        """
        scope = validate_scope(scope)
        attempted = bundle.digest

        existing = self.lookup(fingerprint, scope)
        if existing is not None:
            return self._resolve_existing(existing, attempted)

        tree: dict[str, str] = {}
        for path, data in bundle.files.items():
            try:
                tree[path] = self._registry.put_blob(data)
            except ArtifactIntegrityError as exc:
                message = (
                    f"Cannot publish {scope}/{fingerprint}: stored blob for {path} is corrupt: {exc}"
                )
                logger.critical(message)
                raise CacheCorruptionError(
                    message, fingerprint=fingerprint, scope=scope, attempted=attempted
                ) from exc
        entry = CacheEntry(
            fingerprint=fingerprint,
            scope=scope,
            artifact=bundle.make_ref(f"{scope}/{fingerprint}", stage=stage, scope=scope),
            tree=tree,
        )
        winner = self._registry.create_record(scope, fingerprint, self._encode(entry))
        if winner is not None:
            # Lost a race with a concurrent publisher.
            current = self._decode(winner, fingerprint=fingerprint, scope=scope)
            return self._resolve_existing(current, attempted)

        logger.info(
            "Published layer %s/%s -> %s (%d files)",
            scope,
            fingerprint,
            attempted,
            len(bundle),
        )
        return entry

    @staticmethod
    def _resolve_existing(existing: CacheEntry, attempted: str) -> CacheEntry:
        if existing.artifact.content_address == attempted:
            logger.debug(
                "Publish of %s/%s is a no-op (identical content)",
                existing.scope,
                existing.fingerprint,
            )
            return existing

        message = (
            f"Cache corruption for {existing.scope}/{existing.fingerprint}: "
            f"stored {existing.artifact.content_address}, attempted {attempted}. "
            "Fingerprint collision or non-deterministic dependency stage."
        )
        logger.critical(message)
        raise CacheCorruptionError(
            message,
            fingerprint=existing.fingerprint,
            scope=existing.scope,
            existing=existing.artifact.content_address,
            attempted=attempted,
        )
