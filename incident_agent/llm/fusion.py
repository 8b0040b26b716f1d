"""
Response Fusion
===============
Combines independent provider diagnoses into one consensus judgment.

Algorithm:
    1. Keep usable responses (no error, some content).
    2. Group them by normalized patch text; the group with the largest
       total weight wins (ties: highest member confidence). Its
       highest-confidence member supplies the consensus patch.
    3. agreement = winning weight / usable weight
       coverage  = usable responses / queried providers
       confidence = mean confidence of the winners * agreement * coverage
       risk      = 0.5 * (1 - agreement)
                 + 0.3 * min(1, changed lines / LARGE_PATCH_LINES)
                 + 0.2 * (1 - coverage)

Degenerate Case:
    No usable response (or none carrying a patch) yields confidence 0,
    risk 1 and no patch. fuse() always returns a FusionResult.

Dissenting patches are kept in metadata["alternatives"] for the audit
trail only; the Planner never merges them.
"""
import logging
from typing import Dict, List, Optional

from incident_agent.models.diagnosis import FusionResult, ProviderResponse

logger = logging.getLogger(__name__)

LARGE_PATCH_LINES = 200


def _normalize_patch(patch: str) -> str:
    return "\n".join(line.rstrip() for line in patch.strip().splitlines())


def count_changed_lines(patch: str) -> int:
    """Added + removed lines of a unified diff, file headers excluded."""
    changed = 0
    for line in patch.splitlines():
        if line.startswith(("+++", "---")):
            continue
        if line.startswith(("+", "-")):
            changed += 1
    return changed


class ResponseFusion:
    """
    Parameters
    ----------
    weights : dict[str, float] | None
        Per-provider vote weight; unknown providers weigh 1.0.
    """

    def __init__(self, weights: Optional[Dict[str, float]] = None) -> None:
        self.weights = weights or {}

    def _weight(self, response: ProviderResponse) -> float:
        return self.weights.get(response.provider, 1.0)

    def fuse(self, responses: List[ProviderResponse]) -> FusionResult:
        usable = [r for r in responses if r.usable]
        metadata = {"queried": len(responses), "responded": len(usable)}

        groups: Dict[str, List[ProviderResponse]] = {}
        for r in usable:
            if r.patch.strip():
                groups.setdefault(_normalize_patch(r.patch), []).append(r)

        if not groups:
            logger.warning(
                "Fusion degenerate: %d/%d usable responses, no patch proposed",
                len(usable), len(responses),
            )
            return FusionResult(
                confidence=0.0,
                risk_score=1.0,
                consensus_response="\n\n".join(self._summary(r) for r in usable),
                providers=[r.provider for r in usable],
                patch=None,
                metadata=metadata,
            )

        def rank(members: List[ProviderResponse]):
            return (sum(self._weight(m) for m in members), max(m.confidence for m in members))

        winner_key = max(groups, key=lambda k: rank(groups[k]))
        backers = sorted(groups[winner_key], key=lambda r: r.confidence, reverse=True)
        patch = backers[0].patch

        usable_weight = sum(self._weight(r) for r in usable)
        agreement = sum(self._weight(r) for r in backers) / usable_weight if usable_weight else 0.0
        coverage = len(usable) / len(responses)
        mean_confidence = sum(r.confidence for r in backers) / len(backers)

        confidence = mean_confidence * agreement * coverage
        size_factor = min(1.0, count_changed_lines(patch) / LARGE_PATCH_LINES)
        risk = 0.5 * (1 - agreement) + 0.3 * size_factor + 0.2 * (1 - coverage)

        metadata.update({
            "agreement": round(agreement, 4),
            "coverage": round(coverage, 4),
            "consensus": {"patch": patch, "providers": [r.provider for r in backers]},
            "alternatives": [
                {"providers": [m.provider for m in members], "patch": members[0].patch}
                for key, members in groups.items() if key != winner_key
            ],
        })

        result = FusionResult(
            confidence=max(0.0, min(1.0, confidence)),
            risk_score=max(0.0, min(1.0, risk)),
            consensus_response="\n\n".join(self._summary(r) for r in backers),
            providers=[r.provider for r in usable],
            patch=patch,
            metadata=metadata,
        )
        logger.info(
            "Fusion: confidence=%.2f risk=%.2f agreement=%.2f coverage=%.2f",
            result.confidence, result.risk_score, agreement, coverage,
        )
        return result

    @staticmethod
    def _summary(response: ProviderResponse) -> str:
        parts = [p for p in (response.hypothesis, response.explanation) if p]
        return f"[{response.provider}] " + (" ".join(parts) or response.content[:500])
