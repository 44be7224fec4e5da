"""
Append-only JSONL store for batch log records
"""
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from schemas import BatchLogRecord

logger = logging.getLogger("quizgen.generation_log")


class GenerationLogStore:
    """One JSON line per batch; appends are serialised across threads."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, record: BatchLogRecord) -> None:
        line = record.model_dump_json() + "\n"
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
        logger.debug("Saved generation log %s", record.id)

    def list_all(self) -> List[BatchLogRecord]:
        with self._lock:
            if not self.path.exists():
                return []
            with open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()

        records = []
        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                records.append(BatchLogRecord.model_validate_json(line))
            except ValidationError as e:
                logger.warning("Skipping unreadable log line %d in %s: %s", line_number, self.path,
                               e.errors()[0].get("msg") if e.errors() else e)
        return records

    def find_by_id(self, log_id: str) -> Optional[BatchLogRecord]:
        for record in self.list_all():
            if record.id == log_id:
                return record
        return None

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                os.remove(self.path)
        logger.info("Cleared generation log %s", self.path)

    def count(self) -> int:
        return len(self.list_all())
