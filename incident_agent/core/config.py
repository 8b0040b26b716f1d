"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    AGENT_AUTO_APPLY            — Allow unattended apply of low-risk fixes (default: false)
    GIT_USER_NAME               — Commit author name for the bot identity
    GIT_USER_EMAIL              — Commit author email for the bot identity
    AGENT_REPO_PATH             — Working tree the Executor mutates (default: cwd)
    AGENT_TRUNK_BRANCH          — Trunk branch fixes merge into (default: main)
    AGENT_GIT_REMOTE            — Remote that review branches are pushed to (default: origin)
    AGENT_ROLLBACK_ON_FAILURE   — Roll back the fix branch when a git step fails (default: true)
    AGENT_AUDIT_LOG             — Path of the JSON-lines audit trail
    AGENT_SANDBOX_BACKEND       — "local" (subprocess) or "docker" (ephemeral container)
    AGENT_SANDBOX_TIMEOUT       — Wall-clock budget for one sandbox run, seconds (default: 30)
    AGENT_SANDBOX_MAX_OUTPUT    — Output cap per command, bytes (default: 10 MB)
    AGENT_TEST_COMMAND          — Full test-suite command
    AGENT_TARGETED_TEST_COMMAND — Per failing test command, "{test}" is substituted
    OPENAI_API_KEY / GEMINI_API_KEY / DEEPSEEK_API_KEY / ANTHROPIC_API_KEY
                                — Diagnosis providers; missing keys disable the provider

Decision Thresholds:
    A fix is applied unattended only when auto-apply is on, the fused risk
    score is strictly below AUTO_APPLY_MAX_RISK and the fused confidence is
    strictly above AUTO_APPLY_MIN_CONFIDENCE. Everything else becomes a
    branch pushed for human review.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Decision
AUTO_APPLY = _env_flag("AGENT_AUTO_APPLY")
AUTO_APPLY_MAX_RISK = float(os.getenv("AUTO_APPLY_MAX_RISK", 0.4))
AUTO_APPLY_MIN_CONFIDENCE = float(os.getenv("AUTO_APPLY_MIN_CONFIDENCE", 0.7))

# Bot identity
GIT_USER_NAME = os.getenv("GIT_USER_NAME", "IncidentAgent")
GIT_USER_EMAIL = os.getenv("GIT_USER_EMAIL", "agent@incident.bot")

# Repository
REPO_PATH = os.getenv("AGENT_REPO_PATH", os.getcwd())
TRUNK_BRANCH = os.getenv("AGENT_TRUNK_BRANCH", "main")
GIT_REMOTE = os.getenv("AGENT_GIT_REMOTE", "origin")
GIT_COMMAND_TIMEOUT = int(os.getenv("AGENT_GIT_TIMEOUT", 60))
ROLLBACK_ON_FAILURE = _env_flag("AGENT_ROLLBACK_ON_FAILURE", "true")

# Audit
AUDIT_LOG_PATH = os.getenv("AGENT_AUDIT_LOG", os.path.join(os.getcwd(), "agent-audit.log"))

# Sandbox
SANDBOX_BACKEND = os.getenv("AGENT_SANDBOX_BACKEND", "local")
SANDBOX_TIMEOUT_SECONDS = float(os.getenv("AGENT_SANDBOX_TIMEOUT", 30))
SANDBOX_MAX_OUTPUT_BYTES = int(os.getenv("AGENT_SANDBOX_MAX_OUTPUT", 10 * 1024 * 1024))
SANDBOX_DOCKER_IMAGE = os.getenv("AGENT_SANDBOX_IMAGE", "python:3.11-slim")

# Test commands
TEST_COMMAND = os.getenv("AGENT_TEST_COMMAND", "pytest")
TARGETED_TEST_COMMAND = os.getenv("AGENT_TARGETED_TEST_COMMAND", "pytest -k {test}")

# Diagnosis providers
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("AGENT_PROVIDER_TIMEOUT", 20))
DIAGNOSIS_TEMPERATURE = float(os.getenv("AGENT_DIAGNOSIS_TEMPERATURE", 0.7))
