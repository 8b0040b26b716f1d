"""
Prompts
=======
Diagnosis prompt sent to every provider and the review description
attached to branches pushed for human review.
"""
import json

from incident_agent.models.diagnosis import FusionResult
from incident_agent.models.incident import Incident
from incident_agent.models.test_result import TestResult

DIAGNOSIS_SYSTEM_PROMPT = (
    "You are a senior engineer specialised in debugging and automated fixes. "
    "Respond with a single JSON object and nothing else."
)

_DIAGNOSIS_TEMPLATE = """**Incident:**
- Type: {type}
- Timestamp: {timestamp}
- Stack Trace: {stack_trace}
- Failing Tests: {failing_tests}
- Affected Files: {affected_files}
- Context: {context}

**Task:**
1. Analyse the root cause of the problem
2. Propose a patch in unified diff format, paths relative to the repository root
3. List test commands that validate the fix
4. Estimate your confidence (0-1)

**Return JSON:**
{{
  "hypothesis": "root cause explanation",
  "patch": "unified diff",
  "tests": ["test commands"],
  "confidence": 0.85,
  "explain": "explanation of the fix"
}}"""


def build_diagnostic_prompt(incident: Incident) -> str:
    return _DIAGNOSIS_TEMPLATE.format(
        type=incident.type,
        timestamp=incident.timestamp.isoformat(),
        stack_trace=incident.stack_trace or "N/A",
        failing_tests=", ".join(incident.failing_tests) or "N/A",
        affected_files=", ".join(incident.affected_files) or "N/A",
        context=json.dumps(incident.context, default=str) if incident.context else "N/A",
    )


def build_pr_title(incident: Incident) -> str:
    return f"Agent Fix: {incident.type} ({incident.id})"


def build_pr_description(incident: Incident, fusion: FusionResult, test_result: TestResult) -> str:
    return f"""## Automated fix proposed by the incident agent

**Incident:** {incident.id} ({incident.type})
**Confidence:** {fusion.confidence * 100:.0f}%
**Risk:** {fusion.risk_score * 100:.0f}%

### Diagnosis
{fusion.consensus_response or "No consensus diagnosis."}

### Sandbox
- Passed: {test_result.passed}
- Failed: {test_result.failed}/{test_result.total}
- Duration: {test_result.duration_ms}ms

### Providers consulted
{", ".join(fusion.providers) or "none"}
"""
