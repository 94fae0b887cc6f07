"""Test gate report models — the payload that decides promotion."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TestCaseResult(BaseModel):
    """A single test execution result."""

    __test__ = False
    model_config = ConfigDict(frozen=True)

    test_id: str
    passed: bool
    duration_ms: float = 0.0
    error_message: str = ""


class TestReport(BaseModel):
    """Output of a test gate stage.

    ``payload`` carries the runner's machine-readable output (exit code,
    captured log tail, raw report file contents). The report is written to
    the side channel whether or not the suite passed.
    """

    __test__ = False
    model_config = ConfigDict(frozen=True)

    stage: str
    build_id: str = ""
    scope: str = ""
    passed: bool = False
    cases: list[TestCaseResult] = []
    payload: dict[str, Any] = {}
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def total(self) -> int:
        return len(self.cases)

    @property
    def failed_cases(self) -> list[TestCaseResult]:
        return [c for c in self.cases if not c.passed]
