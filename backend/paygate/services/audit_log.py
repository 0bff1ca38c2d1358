"""
Audit Log Service

Appends one JSON line per event to <log_dir>/<category>_log.json.
Categories in use: request (STK push intake), callback, mock.

Write failures are logged and swallowed; auditing never blocks a request.
"""
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AuditLog:
    """Append-only JSON-lines audit trail, one file per category."""

    def __init__(self, log_dir: str = "logs", enabled_categories: Optional[set] = None):
        self.log_dir = Path(log_dir)
        self.enabled_categories = enabled_categories
        self._lock = threading.Lock()

    def path_for(self, category: str) -> Path:
        return self.log_dir / f"{category}_log.json"

    def write(self, category: str, data: Dict[str, Any]) -> bool:
        """
        Append a timestamped entry.

        Args:
            category: Log category (file prefix)
            data: Entry fields, merged after the timestamp

        Returns:
            True if the entry was written, False if skipped or failed
        """
        if self.enabled_categories is not None and category not in self.enabled_categories:
            return False

        entry = {"timestamp": datetime.now(timezone.utc).isoformat(), **data}
        try:
            line = json.dumps(entry, default=str)
            with self._lock:
                self.log_dir.mkdir(parents=True, exist_ok=True)
                with open(self.path_for(category), "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write {category} audit entry: {e}")
            return False
