"""
Audit logger for Azure DevOps write-back runs.

Persists one JSONL line per executed run, including runs that failed after
creating some remote items, so that orphans can be found and cleaned up.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AuditLogger:
    """Audit logger for write-back runs."""

    REQUIRED_FIELDS = (
        "run_id",
        "operation",
        "root_name",
        "organization",
        "project",
        "result",
        "created_ids",
    )

    def __init__(self, log_dir: str = "audit_logs"):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory to store audit logs (default: "audit_logs")
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def log_run(self, event: Dict[str, Any]) -> Path:
        """
        Log a write-back run to persistent storage.

        Persists:
        - run_id
        - operation (test_plan | work_items)
        - root_name
        - organization / project
        - result (success | failed)
        - created_ids (every remote id created, in creation order)
        - artifacts_may_exist
        - error
        - executed_at

        Args:
            event: Event dictionary with required fields

        Returns:
            Path of the log file written to
        """
        for field in self.REQUIRED_FIELDS:
            if field not in event:
                raise ValueError(f"Missing required audit field: {field}")

        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "run_id": event["run_id"],
            "operation": event["operation"],
            "root_name": event["root_name"],
            "organization": event["organization"],
            "project": event["project"],
            "result": event["result"],
            "created_ids": list(event["created_ids"]),
            "artifacts_may_exist": bool(event.get("artifacts_may_exist", False)),
            "error": event.get("error"),
            "executed_at": event.get("executed_at") or datetime.now().isoformat()
        }

        # One file per day for easier management
        log_date = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{log_date}.jsonl"

        try:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(log_entry) + "\n")
        except OSError as e:
            # Don't fail the run because the audit trail could not be written
            logger.error(f"Failed to write audit log: {e}")

        return log_file
