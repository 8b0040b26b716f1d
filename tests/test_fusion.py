"""
Unit Tests — Response Fusion
============================
"""
import pytest

from incident_agent.llm.fusion import ResponseFusion, count_changed_lines
from incident_agent.models.diagnosis import ProviderResponse

PATCH_A = "--- a/app.py\n+++ b/app.py\n-x = 1\n+x = 2"
PATCH_B = "--- a/app.py\n+++ b/app.py\n-x = 1\n+x = 3"


def _resp(provider, patch="", confidence=0.8, error=None, content="analysis"):
    return ProviderResponse(
        provider=provider,
        content=content,
        hypothesis=f"{provider} thinks so",
        patch=patch,
        confidence=confidence,
        error=error,
    )


def test_count_changed_lines_skips_headers():
    assert count_changed_lines(PATCH_A) == 2


def test_empty_input_is_degenerate():
    result = ResponseFusion().fuse([])
    assert result.confidence == 0.0
    assert result.risk_score == 1.0
    assert result.patch is None


def test_all_errors_is_degenerate():
    result = ResponseFusion().fuse([
        _resp("openai", error="timeout"),
        _resp("gemini", error="HTTP 500"),
    ])
    assert result.confidence == 0.0
    assert result.patch is None
    assert result.metadata["responded"] == 0


def test_unanimous_agreement():
    result = ResponseFusion().fuse([
        _resp("openai", PATCH_A, 0.9),
        _resp("gemini", PATCH_A + "\n", 0.7),
    ])
    assert result.patch == PATCH_A
    assert result.metadata["agreement"] == 1.0
    assert result.metadata["coverage"] == 1.0
    assert result.confidence == pytest.approx(0.8)
    # only the size term contributes
    assert result.risk_score == pytest.approx(0.3 * 2 / 200)
    assert result.metadata["alternatives"] == []


def test_majority_wins_and_dissent_is_recorded():
    result = ResponseFusion().fuse([
        _resp("openai", PATCH_A, 0.6),
        _resp("deepseek", PATCH_A, 0.6),
        _resp("gemini", PATCH_B, 0.99),
    ])
    assert result.patch == PATCH_A
    assert result.metadata["consensus"]["providers"] == ["openai", "deepseek"]
    assert result.metadata["alternatives"] == [{"providers": ["gemini"], "patch": PATCH_B}]
    assert result.metadata["agreement"] == pytest.approx(2 / 3, abs=1e-4)
    assert "patches" not in result.metadata


def test_weights_change_the_winner():
    fusion = ResponseFusion(weights={"anthropic": 3.0})
    result = fusion.fuse([
        _resp("openai", PATCH_A),
        _resp("deepseek", PATCH_A),
        _resp("anthropic", PATCH_B),
    ])
    assert result.patch == PATCH_B


def test_tie_broken_by_confidence():
    result = ResponseFusion().fuse([
        _resp("openai", PATCH_A, 0.5),
        _resp("gemini", PATCH_B, 0.9),
    ])
    assert result.patch == PATCH_B


def test_failed_provider_lowers_coverage_and_confidence():
    full = ResponseFusion().fuse([_resp("openai", PATCH_A, 0.8), _resp("gemini", PATCH_A, 0.8)])
    partial = ResponseFusion().fuse([_resp("openai", PATCH_A, 0.8), _resp("gemini", error="down")])

    assert partial.patch == PATCH_A
    assert partial.metadata["coverage"] == 0.5
    assert partial.confidence < full.confidence
    assert partial.risk_score > full.risk_score


def test_scores_stay_in_unit_interval():
    huge = "\n".join(f"+line {i}" for i in range(1000))
    result = ResponseFusion().fuse([_resp("openai", huge, 1.0), _resp("gemini", PATCH_B, 1.0)])
    assert 0.0 <= result.confidence <= 1.0
    assert 0.0 <= result.risk_score <= 1.0
