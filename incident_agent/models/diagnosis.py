"""
Diagnosis Models
================
ProviderResponse — one AI backend's answer (or failure) for an incident.
FusionResult     — the single consensus judgment built from all responses.

A FusionResult exists even when no provider answered: confidence is 0,
risk is 1 and there is no patch.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ProviderResponse(BaseModel):
    provider: str
    content: str = ""
    hypothesis: str = ""
    patch: str = ""
    tests: List[str] = Field(default_factory=list)
    explanation: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.error is None and bool(self.patch.strip() or self.content.strip())


class FusionResult(BaseModel):
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    risk_score: float = Field(default=1.0, ge=0.0, le=1.0)
    consensus_response: str = ""
    providers: List[str] = Field(default_factory=list)
    patch: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
