from __future__ import annotations

import uuid
from datetime import datetime, timezone
from threading import RLock
from typing import Dict, List, Optional

from .contracts import CaseRecord


def new_case_id() -> str:
    return f"case_{uuid.uuid4().hex}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryCaseStore:
    def __init__(self) -> None:
        self._lock = RLock()
        self._cases: Dict[str, CaseRecord] = {}
        self._order: List[str] = []

    def save_case(self, record: CaseRecord) -> None:
        with self._lock:
            if record.id in self._cases:
                raise ValueError(f"Case already stored: {record.id}")
            self._cases[record.id] = record.model_copy(deep=True)
            self._order.append(record.id)

    def get_case(self, case_id: str) -> Optional[CaseRecord]:
        with self._lock:
            record = self._cases.get(case_id)
            if record is None:
                return None
            return record.model_copy(deep=True)

    def list_case_ids(self) -> List[str]:
        with self._lock:
            return list(self._order)

    def wipe(self) -> int:
        with self._lock:
            removed = len(self._cases)
            self._cases.clear()
            self._order.clear()
        return removed
