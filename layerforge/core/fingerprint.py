"""Fingerprint engine — a stable digest of a dependency manifest within a scope.

The fingerprint is the cache key for dependency layers. It must be
identical for identical (manifest content, scope) pairs on every machine,
and must differ across scopes so independent build lineages never share
an entry.
"""

from __future__ import annotations

from layerforge.core.errors import InvalidScopeError
from layerforge.core.hasher import canonical_json_bytes, sha256_hex
from layerforge.models.manifest import Manifest

DEFAULT_FINGERPRINT_LENGTH = 16
MIN_FINGERPRINT_LENGTH = 12


def validate_scope(scope: str) -> str:
    """Return the trimmed scope, raising ``InvalidScopeError`` if it is empty."""
    if not isinstance(scope, str) or not scope.strip():
        raise InvalidScopeError(f"Scope must be a non-empty string, got {scope!r}")
    return scope.strip()


def empty_fingerprint(length: int = DEFAULT_FINGERPRINT_LENGTH) -> str:
    """Sentinel fingerprint for a manifest with no entries."""
    return "0" * length


def canonical_manifest_bytes(manifest: Manifest) -> bytes:
    """Canonical byte form: sorted, trimmed, de-duplicated entry lines."""
    return "\n".join(manifest.canonical_lines()).encode("utf-8")


def fingerprint(
    manifest: Manifest,
    scope: str,
    *,
    invalidation: str = "",
    length: int = DEFAULT_FINGERPRINT_LENGTH,
) -> str:
    """SHA-256 of canonical(manifest + scope), truncated to *length* hex chars.

    A non-empty *invalidation* token is folded into the digest, moving the
    stage to a fresh cache key without touching existing entries.
    """
    scope = validate_scope(scope)
    if length < MIN_FINGERPRINT_LENGTH or length > 64:
        raise ValueError(
            f"fingerprint length must be between {MIN_FINGERPRINT_LENGTH} and 64"
        )
    if manifest.is_empty and not invalidation:
        return empty_fingerprint(length)

    payload: dict[str, object] = {
        "manifest": manifest.canonical_lines(),
        "scope": scope,
    }
    if invalidation:
        payload["invalidation"] = invalidation
    return sha256_hex(canonical_json_bytes(payload))[:length]
