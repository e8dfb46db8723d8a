"""
Pipeline Event Log
==================
Append-only newline-delimited JSON log of pipeline events
(``logs/mlops-pipeline.log``).
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Union

from ..errors import StorageError

logger = logging.getLogger(__name__)


class EventLog:
    """One JSON object per line: ``eventType``, ``timestamp``, ``status`` plus details."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, event_type: str, status: str, **data: Any) -> Dict[str, Any]:
        entry = {
            "eventType": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "status": status,
        }
        entry.update(data)
        line = json.dumps(entry, default=str)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            raise StorageError(f"Failed to append to {self.path}: {e}") from e
        return entry

    def read(self) -> List[Dict[str, Any]]:
        """All parseable entries, oldest first."""
        if not self.path.exists():
            return []
        entries = []
        with open(self.path, "r", encoding="utf-8") as f:
            for number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except ValueError:
                    logger.warning(f"Skipping malformed event on line {number} of {self.path.name}")
        return entries
