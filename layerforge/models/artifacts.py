"""Content-addressed artifact models (immutable once produced)."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict, Field, field_validator

from layerforge.core.hasher import tree_digest


def normalize_artifact_path(raw: str) -> str:
    """Return a clean relative POSIX path, rejecting anything that escapes the tree."""
    cleaned = raw.replace("\\", "/").strip()
    path = PurePosixPath(cleaned)
    if not cleaned or path.is_absolute() or ".." in path.parts:
        raise ValueError(f"invalid artifact path: {raw!r}")
    normalized = str(path)
    if normalized in ("", "."):
        raise ValueError(f"invalid artifact path: {raw!r}")
    return normalized


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """True if *path* matches a glob pattern or lives under a ``dir/`` pattern."""
    for pattern in patterns:
        if pattern.endswith("/") and path.startswith(pattern):
            return True
        if fnmatch.fnmatchcase(path, pattern):
            return True
    return False


class ArtifactRef(BaseModel):
    """A typed reference to a content-addressed file tree.

    ``content_address`` is the tree digest of the bundle it points at.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    content_address: str  # "sha256:<hex>"
    stage: str = ""
    scope: str = ""
    file_count: int = 0
    size_bytes: int = 0


class ArtifactBundle(BaseModel):
    """An in-memory file tree: relative POSIX path -> bytes.

    The identity of a bundle is its ``digest``, computed over paths and
    contents only, so two bundles with the same files are interchangeable.
    """

    model_config = ConfigDict(frozen=True)

    files: dict[str, bytes] = {}

    @field_validator("files")
    @classmethod
    def _normalize_paths(cls, value: dict[str, bytes]) -> dict[str, bytes]:
        normalized = {normalize_artifact_path(p): data for p, data in value.items()}
        return dict(sorted(normalized.items()))

    @property
    def digest(self) -> str:
        return tree_digest(self.files)

    @property
    def paths(self) -> list[str]:
        return list(self.files)

    @property
    def size_bytes(self) -> int:
        return sum(len(data) for data in self.files.values())

    def __len__(self) -> int:
        return len(self.files)

    def __contains__(self, path: object) -> bool:
        return path in self.files

    def has_prefix(self, prefix: str) -> bool:
        """True if any file lives under directory *prefix*."""
        prefix = prefix.rstrip("/") + "/"
        return any(p.startswith(prefix) for p in self.files)

    def without(self, patterns: Iterable[str]) -> ArtifactBundle:
        """Return a copy with every path matching *patterns* removed."""
        patterns = list(patterns)
        return ArtifactBundle(
            files={p: d for p, d in self.files.items() if not matches_any(p, patterns)}
        )

    def make_ref(self, name: str, *, stage: str = "", scope: str = "") -> ArtifactRef:
        """Create an ArtifactRef describing this bundle."""
        return ArtifactRef(
            name=name,
            content_address=self.digest,
            stage=stage,
            scope=scope,
            file_count=len(self.files),
            size_bytes=self.size_bytes,
        )

    # ------------------------------------------------------------------
    # Filesystem bridges
    # ------------------------------------------------------------------

    @classmethod
    def from_directory(
        cls, root: Path | str, *, exclude: Iterable[str] = ()
    ) -> ArtifactBundle:
        """Read every regular file under *root* into a bundle."""
        root = Path(root)
        patterns = list(exclude)
        files: dict[str, bytes] = {}
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            rel = path.relative_to(root).as_posix()
            if matches_any(rel, patterns):
                continue
            files[rel] = path.read_bytes()
        return cls(files=files)

    def write_to(self, root: Path | str) -> list[Path]:
        """Materialize the bundle under *root*. Returns the written paths."""
        root = Path(root)
        written: list[Path] = []
        for rel, data in self.files.items():
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            written.append(target)
        return written

    @classmethod
    def merge(cls, bundles: Iterable[ArtifactBundle]) -> ArtifactBundle:
        """Overlay bundles in order; later bundles win on identical paths."""
        files: dict[str, bytes] = {}
        for bundle in bundles:
            files.update(bundle.files)
        return cls(files=files)


class StageArtifact(BaseModel):
    """What travels along a DAG edge: a reference plus the tree it names."""

    model_config = ConfigDict(frozen=True)

    ref: ArtifactRef
    bundle: ArtifactBundle

    @classmethod
    def of(cls, bundle: ArtifactBundle, *, stage: str, scope: str) -> StageArtifact:
        return cls(ref=bundle.make_ref(stage, stage=stage, scope=scope), bundle=bundle)


class CacheEntry(BaseModel):
    """A published dependency layer in the registry.

    Created once by ``LayerCacheStore.publish`` and never mutated. ``tree``
    maps each relative path to the SHA-256 digest of its blob.
    """

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    scope: str
    artifact: ArtifactRef
    tree: dict[str, str] = {}
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class RuntimeArtifact(BaseModel):
    """The minimal assembled output intended for deployment.

    ``sources`` maps each upstream stage name to the content address of the
    artifact it contributed.
    """

    model_config = ConfigDict(frozen=True)

    ref: ArtifactRef
    bundle: ArtifactBundle
    entrypoints: tuple[str, ...] = ()
    sources: dict[str, str] = {}

    @property
    def content_address(self) -> str:
        return self.ref.content_address

    def write_to(self, root: Path | str) -> list[Path]:
        """Export the runtime file tree to *root*."""
        return self.bundle.write_to(root)
