"""
Auditor
=======
Append-only, queryable JSON-lines log of every pipeline action.

Contract:
    - log() appends exactly one line per entry and never raises; I/O
      failures go to the logging channel instead (best-effort durability).
    - Lines are flushed and fsynced before log() returns, so the
      Orchestrator can rely on write-ahead ordering.
    - get_history() returns entries in write order and is safe on a cold
      start (no file yet -> empty list).
    - Concurrent writers within the process are serialized by a lock;
      each entry is written with a single write() call.
"""
import asyncio
import logging
import os
import threading
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from incident_agent.core.config import AUDIT_LOG_PATH
from incident_agent.models.audit import AuditEntry, audit_entry_adapter

logger = logging.getLogger(__name__)


class Auditor:
    """
    The single source of truth for everything the agent has done.

    Usage:
        auditor = Auditor("/var/log/agent-audit.log")
        await auditor.log(PlanLogged(incident_id="I1", plan=plan))
        entries = await auditor.get_history("I1")
    """

    def __init__(self, log_file: str = AUDIT_LOG_PATH, fsync: bool = True) -> None:
        self.log_file = log_file
        self._fsync = fsync
        self._lock = threading.Lock()

    async def log(self, entry: AuditEntry) -> None:
        """Append one entry, filling in the timestamp if absent."""
        try:
            if entry.timestamp is None:
                entry = entry.model_copy(update={"timestamp": datetime.now(timezone.utc)})
            line = entry.model_dump_json() + "\n"
            await asyncio.to_thread(self._append, line)
        except Exception as e:
            logger.error(
                "Failed to write audit entry (%s, incident=%s): %s",
                getattr(entry, "action", "?"), getattr(entry, "incident_id", None), e,
            )
            return

        logger.debug("Audit logged: %s (incident=%s)", entry.action, entry.incident_id)

    def _append(self, line: str) -> None:
        with self._lock:
            directory = os.path.dirname(os.path.abspath(self.log_file))
            os.makedirs(directory, exist_ok=True)
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                if self._fsync:
                    os.fsync(f.fileno())

    async def get_history(self, incident_id: Optional[str] = None) -> List[AuditEntry]:
        """Return entries in write order, optionally only those of one incident."""
        return await asyncio.to_thread(self._read, incident_id)

    def _read(self, incident_id: Optional[str]) -> List[AuditEntry]:
        with self._lock:
            try:
                with open(self.log_file, "r", encoding="utf-8") as f:
                    lines = f.readlines()
            except FileNotFoundError:
                return []

        entries: List[AuditEntry] = []
        for line_no, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                entry = audit_entry_adapter.validate_json(line)
            except ValidationError as e:
                logger.warning(
                    "Skipping unreadable audit line %d in %s: %s",
                    line_no, self.log_file, e.errors()[0].get("msg", e),
                )
                continue
            if incident_id is None or entry.incident_id == incident_id:
                entries.append(entry)
        return entries
