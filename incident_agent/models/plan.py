"""
Plan Model
==========
Built once per run by the Planner, consumed by SandboxRunner and Executor.
"""
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    patch: str = ""
    test_commands: List[str] = Field(default_factory=list)
    risk_score: float = Field(default=1.0, ge=0.0, le=1.0)
    title: str = ""
    description: str = ""

    @property
    def is_actionable(self) -> bool:
        """An empty patch has nothing to validate or apply."""
        return bool(self.patch.strip())
