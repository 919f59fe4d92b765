"""
Audit logging for reconciliation decisions.
"""

import json
from collections import Counter, deque
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog

from ..config import Settings, get_settings
from ..models import AuditAction, AuditEntry

logger = structlog.get_logger()


class AuditLogger:
    """
    Logger for audit trail of reconciliation decisions.
    Keeps the most recent entries in memory (audit_max_entries) and can
    export them to a JSON file.
    """

    def __init__(self, trail_id: str = "engine", settings: Optional[Settings] = None):
        self.trail_id = trail_id
        self.settings = settings or get_settings()
        self.entries: deque = deque(maxlen=self.settings.audit_max_entries)

    def log(self, entry: AuditEntry) -> None:
        """Add an audit entry."""
        self.entries.append(entry)

        log_method = logger.info if entry.success else logger.warning
        log_method(
            entry.message,
            action=entry.action.value,
            statement_id=entry.statement_id,
            match_id=entry.match_id,
            transaction_ids=entry.transaction_ids,
            actor=entry.actor,
            success=entry.success,
        )

    def record(
        self,
        action: AuditAction,
        message: str,
        statement_id: Optional[str] = None,
        match_id: Optional[str] = None,
        transaction_ids: Optional[List[str]] = None,
        actor: str = "system",
        success: bool = True,
        error_message: Optional[str] = None,
        **details,
    ) -> AuditEntry:
        """Build and log an entry in one call."""
        entry = AuditEntry(
            action=action,
            statement_id=statement_id,
            match_id=match_id,
            transaction_ids=list(transaction_ids or []),
            actor=actor,
            message=message,
            details=details,
            success=success,
            error_message=error_message,
        )
        self.log(entry)
        return entry

    def get_entries(
        self,
        action_filter: Optional[str] = None,
        statement_id: Optional[str] = None,
        success_only: bool = False,
    ) -> List[AuditEntry]:
        """Get filtered audit entries."""
        entries = list(self.entries)

        if action_filter:
            entries = [e for e in entries if e.action.value == action_filter]

        if statement_id:
            entries = [e for e in entries if e.statement_id == statement_id]

        if success_only:
            entries = [e for e in entries if e.success]

        return entries

    def export_to_file(self, output_path: Optional[Path] = None) -> Path:
        """Export audit log to JSON file."""
        if output_path is None:
            output_path = self.settings.reports_dir / f"audit_{self.trail_id}.json"

        output_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "trail_id": self.trail_id,
            "exported_at": datetime.utcnow().isoformat(),
            "total_entries": len(self.entries),
            "entries": [e.to_dict() for e in self.entries],
        }

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

        logger.info("Audit log exported", path=str(output_path))
        return output_path

    def clear(self) -> int:
        """Drop all entries; returns how many were held."""
        count = len(self.entries)
        self.entries.clear()
        return count

    def summary(self) -> dict:
        """Get summary statistics of audit log."""
        action_counts = Counter(e.action.value for e in self.entries)
        success_count = sum(1 for e in self.entries if e.success)

        return {
            "total_entries": len(self.entries),
            "success_count": success_count,
            "error_count": len(self.entries) - success_count,
            "action_counts": dict(action_counts),
        }
