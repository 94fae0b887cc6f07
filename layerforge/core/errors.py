"""Error taxonomy for the build cache and promotion gate.

Every failure a build can end with is a ``BuildError`` subclass carrying an
``ErrorKind`` and a ``retryable`` flag, so callers can tell a transient
registry outage apart from a configuration defect or a failed test suite.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar


class ErrorKind(str, Enum):
    """Machine-readable failure categories attached to a failed build."""

    INVALID_SCOPE = "invalid_scope"
    INVALID_STAGE_GRAPH = "invalid_stage_graph"
    CYCLE_DETECTED = "cycle_detected"
    ASSEMBLY_INCOMPLETE = "assembly_incomplete"
    REGISTRY_UNAVAILABLE = "registry_unavailable"
    NOT_FOUND = "not_found"
    CACHE_CORRUPTION = "cache_corruption"
    TEST_FAILURE = "test_failure"
    STAGE_FAILED = "stage_failed"
    CANCELLED = "cancelled"


class BuildError(RuntimeError):
    """Base class for all layerforge failures."""

    kind: ClassVar[ErrorKind] = ErrorKind.STAGE_FAILED
    retryable: ClassVar[bool] = False


class InvalidScopeError(BuildError, ValueError):
    """Raised when a scope identifier is empty or otherwise unusable."""

    kind = ErrorKind.INVALID_SCOPE


class ScopeMismatchError(InvalidScopeError):
    """Raised when artifacts from different scopes are combined."""


class InvalidStageGraphError(BuildError, ValueError):
    """Raised when a stage graph references unknown stages or breaks a kind contract."""

    kind = ErrorKind.INVALID_STAGE_GRAPH


class CycleDetectedError(InvalidStageGraphError):
    """Raised when the stage graph contains a cycle."""

    kind = ErrorKind.CYCLE_DETECTED

    def __init__(self, message: str, stages: list[str] | None = None) -> None:
        super().__init__(message)
        self.stages = list(stages or [])


class AssemblyIncompleteError(BuildError):
    """Raised when a declared copy source or entrypoint is missing upstream."""

    kind = ErrorKind.ASSEMBLY_INCOMPLETE


class RegistryUnavailableError(BuildError):
    """Raised when the registry backend cannot be reached.

    Transient: callers may retry with backoff. It never means "absent".
    """

    kind = ErrorKind.REGISTRY_UNAVAILABLE
    retryable = True


class ArtifactNotFoundError(BuildError, LookupError):
    """Raised when a cache entry or blob does not exist in the registry."""

    kind = ErrorKind.NOT_FOUND


class CacheCorruptionError(BuildError):
    """Raised when a fingerprint maps to content other than what is stored.

    Signals a fingerprint collision or a non-deterministic dependency stage.
    Never resolved automatically.
    """

    kind = ErrorKind.CACHE_CORRUPTION

    def __init__(
        self,
        message: str,
        *,
        fingerprint: str = "",
        scope: str = "",
        existing: str = "",
        attempted: str = "",
    ) -> None:
        super().__init__(message)
        self.fingerprint = fingerprint
        self.scope = scope
        self.existing = existing
        self.attempted = attempted


class TestFailureError(BuildError):
    """Raised when the test gate reports a failing suite."""

    __test__ = False  # keep pytest from collecting this class
    kind = ErrorKind.TEST_FAILURE

    def __init__(
        self, message: str, *, report: object = None, report_path: str = ""
    ) -> None:
        super().__init__(message)
        self.report = report
        self.report_path = report_path


class StageExecutionError(BuildError):
    """Raised when a stage executor fails for any other reason."""

    kind = ErrorKind.STAGE_FAILED


class BuildCancelledError(BuildError):
    """Raised when a build is cancelled at a stage boundary."""

    kind = ErrorKind.CANCELLED
