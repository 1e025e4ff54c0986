"""File-backed retake ledger.

Tracks, per ``(user_id, exam_type)``, how many attempts were recorded, any cooldown window and a
one-shot administrative override. The whole document is read and rewritten on every call with no
file locking, so concurrent writers are last-writer-wins. The methods block on file I/O; async
callers run them in a worker thread.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from assessment.models import AttemptHistoryEntry, Eligibility, PolicyLedgerEntry, utcnow

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "v1"


class AttemptTracker:
    def __init__(self, storage_path: str = "artifacts/attempt-log.json") -> None:
        self.storage_path = Path(storage_path)

    # ===== file I/O =====

    def _empty(self) -> dict[str, Any]:
        return {"schema": SCHEMA_VERSION, "updated_at": utcnow().isoformat(), "entries": []}

    def _load(self) -> dict[str, Any]:
        if not self.storage_path.exists():
            return self._empty()
        with self.storage_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        data.setdefault("entries", [])
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        data["updated_at"] = utcnow().isoformat()
        with self.storage_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    @staticmethod
    def _find(data: dict[str, Any], user_id: str, exam_type: str) -> Optional[dict[str, Any]]:
        for entry in data["entries"]:
            if entry.get("user_id") == user_id and entry.get("exam_type") == exam_type:
                return entry
        return None

    def _get_or_create(self, data: dict[str, Any], user_id: str, exam_type: str) -> dict[str, Any]:
        entry = self._find(data, user_id, exam_type)
        if entry is None:
            entry = PolicyLedgerEntry(user_id=user_id, exam_type=exam_type).model_dump(mode="json")
            data["entries"].append(entry)
        return entry

    # ===== reads =====

    def get_entry(self, user_id: str, exam_type: str) -> Optional[PolicyLedgerEntry]:
        entry = self._find(self._load(), user_id, exam_type)
        return PolicyLedgerEntry.model_validate(entry) if entry else None

    def get_attempts(self, user_id: str, exam_type: str) -> int:
        entry = self.get_entry(user_id, exam_type)
        return entry.attempts if entry else 0

    def get_latest_version(self, user_id: str, exam_type: str) -> int:
        entry = self.get_entry(user_id, exam_type)
        if entry is None or not entry.history:
            return 0
        return max(h.version for h in entry.history)

    # ===== policy =====

    def can_attempt(
        self, user_id: str, exam_type: str, max_attempts: int, now: datetime | None = None
    ) -> Eligibility:
        now = now or utcnow()
        data = self._load()
        entry = self._find(data, user_id, exam_type)
        if entry is None:
            return Eligibility(ok=True)

        if entry.get("override"):
            # One-shot: the override is spent by the check that uses it.
            entry["override"] = False
            self._save(data)
            logger.info(f"Override consumed for user={user_id} exam_type={exam_type}")
            return Eligibility(ok=True, reason="override")

        parsed = PolicyLedgerEntry.model_validate(entry)
        if parsed.cooldown_until is not None and parsed.cooldown_until > now:
            return Eligibility(ok=False, reason="cooldown", until=parsed.cooldown_until)

        if parsed.attempts >= max_attempts:
            return Eligibility(ok=False, reason="limit")

        return Eligibility(ok=True)

    def record_attempt(
        self,
        user_id: str,
        exam_type: str,
        result_id: str | None = None,
        grade: float | None = None,
        passed: bool | None = None,
    ) -> int:
        """Append a history entry and return its version."""
        data = self._load()
        entry = self._get_or_create(data, user_id, exam_type)
        now = utcnow()

        history = entry.setdefault("history", [])
        version = max((h.get("version") or 0 for h in history), default=0) + 1
        attempts = int(entry.get("attempts") or 0) + 1

        item = AttemptHistoryEntry(
            n=attempts,
            at=now,
            result_id=result_id or f"res-{uuid4().hex[:12]}",
            grade=grade,
            passed=passed,
            version=version,
        )
        history.append(item.model_dump(mode="json"))
        entry["attempts"] = attempts
        entry["last_attempt_at"] = now.isoformat()
        entry["override"] = False

        self._save(data)
        return version

    def set_cooldown(
        self,
        user_id: str,
        exam_type: str,
        until: datetime | None = None,
        hours: float | None = None,
    ) -> datetime:
        if until is None:
            if hours is None:
                raise ValueError("set_cooldown needs either until or hours")
            until = utcnow() + timedelta(hours=hours)

        data = self._load()
        entry = self._get_or_create(data, user_id, exam_type)
        entry["cooldown_until"] = until.isoformat()
        self._save(data)
        return until

    def set_override(self, user_id: str, exam_type: str, value: bool = True) -> PolicyLedgerEntry:
        data = self._load()
        entry = self._get_or_create(data, user_id, exam_type)
        entry["override"] = bool(value)
        self._save(data)
        return PolicyLedgerEntry.model_validate(entry)
