"""
Test Result Model
=================
Structured outcome of one sandbox run.

Invariants (validated):
    passed  <=>  failed == 0
    failed  <=   total, except for execution errors, which carry
                 total=0, failed=1 and set `error`
"""
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class TestResult(BaseModel):
    __test__ = False  # not a pytest test class

    passed: bool
    total: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    duration_ms: int = Field(default=0, ge=0)
    output: str = ""
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_counts(self) -> "TestResult":
        if self.passed != (self.failed == 0):
            raise ValueError("passed must be True exactly when failed == 0")
        if self.error is None and self.failed > self.total:
            raise ValueError("failed cannot exceed total")
        return self

    @classmethod
    def from_counts(cls, total: int, failed: int, duration_ms: int, output: str) -> "TestResult":
        return cls(
            passed=failed == 0,
            total=max(total, failed),
            failed=failed,
            duration_ms=duration_ms,
            output=output,
        )

    @classmethod
    def from_error(cls, error: str, duration_ms: int, output: str = "") -> "TestResult":
        return cls(
            passed=False,
            total=0,
            failed=1,
            duration_ms=duration_ms,
            output=output or error,
            error=error,
        )
