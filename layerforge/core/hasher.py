"""Canonical hashing helpers for fingerprints and content addressing.

Everything layerforge hashes goes through the same canonical JSON
serialization so digests are stable across machines and Python versions.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, unquote

CONTENT_ADDRESS_PREFIX = "sha256:"


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object.

    Returns "sha256:<hex>" format used by the registry and the assembler.
    """
    return f"{CONTENT_ADDRESS_PREFIX}{sha256_hex(canonical_json_bytes(obj))}"


def strip_prefix(address: str) -> str:
    """Strip the ``sha256:`` prefix from a content address, if present."""
    return address.removeprefix(CONTENT_ADDRESS_PREFIX)


def tree_digest(files: Mapping[str, bytes]) -> str:
    """Content address of a file tree.

    The tree is reduced to ``{path: sha256(bytes)}`` before hashing, so the
    digest depends only on paths and contents, never on insertion order.
    """
    return content_address({path: sha256_hex(data) for path, data in files.items()})


def encode_path_component(value: str) -> str:
    """Encode *value* as one directory name.

    Separators and dots are percent-encoded, so ``"feature/x"`` and ``".."``
    each stay a single component below their parent.
    """
    return quote(value, safe="").replace(".", "%2E")


def decode_path_component(name: str) -> str:
    return unquote(name)
