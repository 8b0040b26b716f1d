"""
Incident Agent CLI
==================
Local entry point for the monitoring/CI system that reports incidents.

Usage:
    python main.py run incident.json          # one pipeline run, prints FixResult JSON
    python main.py history [--incident ID]    # print the audit trail as JSON lines

Exit codes:
    0  applied or pr_created (history: always 0)
    1  tests_failed or rejected
    2  unreadable incident file
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from incident_agent.agents.orchestrator import Orchestrator
from incident_agent.core.config import AUDIT_LOG_PATH
from incident_agent.models.incident import Incident
from incident_agent.services.auditor import Auditor
from incident_agent.utils.logging_config import setup_logging

logger = logging.getLogger("main")


def load_incident(path: str) -> Incident:
    with open(path, "r", encoding="utf-8") as f:
        return Incident.model_validate(json.load(f))


async def _run(path: str, audit_log: str) -> int:
    try:
        incident = load_incident(path)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error("Cannot read incident from %s: %s", path, e)
        return 2

    orchestrator = Orchestrator(auditor=Auditor(audit_log))
    try:
        result = await orchestrator.handle_incident(incident)
    finally:
        close = getattr(orchestrator.provider_adapter, "close", None)
        if close is not None:
            await close()

    print(result.model_dump_json(indent=2))
    return 0 if result.status in ("applied", "pr_created") else 1


async def _history(incident_id: Optional[str], audit_log: str) -> int:
    for entry in await Auditor(audit_log).get_history(incident_id):
        print(entry.model_dump_json())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Autonomous incident remediation agent")
    parser.add_argument("--audit-log", default=AUDIT_LOG_PATH, help="Audit trail file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Handle one incident")
    run.add_argument("incident_file", help="Incident JSON file")

    history = sub.add_parser("history", help="Print audit entries")
    history.add_argument("--incident", default=None, help="Only entries of this incident id")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.command == "run":
        return asyncio.run(_run(args.incident_file, args.audit_log))
    return asyncio.run(_history(args.incident, args.audit_log))


if __name__ == "__main__":
    sys.exit(main())
