"""
Planner
=======
Turns a fused AI diagnosis into an executable Plan.

Patch Unification:
    Candidate patches are collected from the fusion (its consensus patch,
    metadata["consensus"]["patch"] and metadata["patches"]). More than one
    candidate is unified by ordered line-level set union. This merge is
    NOT semantic: conflicting hunks are not detected, and the sandbox is
    the only guard against a broken union.

Test Commands:
    Always the full suite first, then one targeted command per failing
    test named by the incident.
"""
import logging
import shlex
from typing import List

from incident_agent.core.config import TARGETED_TEST_COMMAND, TEST_COMMAND
from incident_agent.models.diagnosis import FusionResult
from incident_agent.models.incident import Incident
from incident_agent.models.plan import Plan

logger = logging.getLogger(__name__)


def extract_patches(fusion: FusionResult) -> List[str]:
    """Collect non-empty candidate patches, first occurrence wins."""
    candidates: List[str] = []
    if fusion.patch:
        candidates.append(fusion.patch)

    consensus = fusion.metadata.get("consensus")
    if isinstance(consensus, dict) and isinstance(consensus.get("patch"), str):
        candidates.append(consensus["patch"])

    extra = fusion.metadata.get("patches")
    if isinstance(extra, list):
        candidates.extend(p for p in extra if isinstance(p, str))

    seen = set()
    patches: List[str] = []
    for patch in candidates:
        if patch.strip() and patch not in seen:
            seen.add(patch)
            patches.append(patch)
    return patches


def unify_patches(patches: List[str]) -> str:
    if not patches:
        return ""
    if len(patches) == 1:
        return patches[0]

    # dict keeps insertion order
    unique_lines = dict.fromkeys(line for patch in patches for line in patch.split("\n"))
    return "\n".join(unique_lines)


class Planner:
    """
    Usage:
        plan = Planner().create_plan(fusion, incident)
    """

    def __init__(
        self,
        test_command: str = TEST_COMMAND,
        targeted_test_command: str = TARGETED_TEST_COMMAND,
    ) -> None:
        self.test_command = test_command
        self.targeted_test_command = targeted_test_command

    def generate_test_commands(self, incident: Incident) -> List[str]:
        commands = [self.test_command]
        for test in incident.failing_tests:
            commands.append(self.targeted_test_command.format(test=shlex.quote(test)))
        return commands

    def create_plan(self, fusion: FusionResult, incident: Incident) -> Plan:
        patches = extract_patches(fusion)
        if len(patches) > 1:
            logger.warning(
                "Unifying %d candidate patches for %s by line union (no conflict detection)",
                len(patches), incident.id,
            )

        plan = Plan(
            patch=unify_patches(patches),
            test_commands=self.generate_test_commands(incident),
            risk_score=fusion.risk_score,
            title=f"Fix {incident.type}: {incident.id}",
            description=fusion.consensus_response,
        )
        logger.info(
            "Plan for %s: %d patch candidate(s), %d test command(s), risk=%.2f",
            incident.id, len(patches), len(plan.test_commands), plan.risk_score,
        )
        return plan
