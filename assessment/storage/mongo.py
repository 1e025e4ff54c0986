from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument

from assessment.models import (
    CameraStatus,
    Incident,
    ProctoringSession,
    ProctoringViolation,
    QuestionPackage,
    ViolationEvent,
    ViolationEventType,
    utcnow,
)
from assessment.storage.repo import PackageStore, ProctoringStore


class _MongoBase:
    def __init__(self, mongo_uri: str, db_name: str, client: AsyncIOMotorClient | None = None) -> None:
        self.client = client or AsyncIOMotorClient(mongo_uri, tz_aware=True)
        self.db = self.client[db_name]


class MongoPackageStore(_MongoBase, PackageStore):
    def __init__(self, mongo_uri: str, db_name: str, client: AsyncIOMotorClient | None = None) -> None:
        super().__init__(mongo_uri, db_name, client)
        self.packages = self.db["exam_packages"]

    async def insert(self, package: QuestionPackage) -> str:
        doc = package.model_dump(mode="json")
        # Keep timestamps as BSON dates rather than ISO strings.
        doc["created_at"] = package.created_at
        doc["updated_at"] = package.updated_at
        await self.packages.insert_one(doc)
        return package.package_id

    async def get_by_attempt(self, attempt_id: int) -> Optional[QuestionPackage]:
        doc = await self.packages.find_one({"attempt_id": attempt_id}, {"_id": 0})
        if not doc:
            return None
        return QuestionPackage.model_validate(doc)

    async def update(self, attempt_id: int, fields: dict[str, Any]) -> None:
        update = {k: (v.value if hasattr(v, "value") else v) for k, v in fields.items()}
        update["updated_at"] = utcnow()
        await self.packages.update_one({"attempt_id": attempt_id}, {"$set": update})


class MongoProctoringStore(_MongoBase, ProctoringStore):
    def __init__(self, mongo_uri: str, db_name: str, client: AsyncIOMotorClient | None = None) -> None:
        super().__init__(mongo_uri, db_name, client)
        self.sessions = self.db["proctoring_sessions"]
        self.violations = self.db["proctoring_violations"]
        self.incidents = self.db["incidents"]

    async def upsert_session(self, attempt_id: str, exam_id: str) -> ProctoringSession:
        doc = await self.sessions.find_one_and_update(
            {"attempt_id": attempt_id},
            {
                "$set": {"camera_status": CameraStatus.active.value},
                "$setOnInsert": {"attempt_id": attempt_id, "exam_id": exam_id, "start_time": utcnow(), "events": []},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
            projection={"_id": 0},
        )
        return ProctoringSession.model_validate(doc)

    async def get_session(self, attempt_id: str) -> Optional[ProctoringSession]:
        doc = await self.sessions.find_one({"attempt_id": attempt_id}, {"_id": 0})
        return ProctoringSession.model_validate(doc) if doc else None

    async def get_violation(self, attempt_id: str) -> Optional[ProctoringViolation]:
        doc = await self.violations.find_one({"attempt_id": attempt_id}, {"_id": 0})
        return ProctoringViolation.model_validate(doc) if doc else None

    def _event(self, event_type: ViolationEventType, ts: datetime | None = None) -> dict[str, Any]:
        return {"type": event_type.value, "timestamp": ts or utcnow()}

    async def record_violation(self, attempt_id: str) -> ProctoringViolation:
        doc = await self.violations.find_one_and_update(
            {"attempt_id": attempt_id},
            {
                "$inc": {"count": 1},
                "$push": {"events": self._event(ViolationEventType.focus_lost)},
                "$setOnInsert": {"attempt_id": attempt_id},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
            projection={"_id": 0},
        )
        return ProctoringViolation.model_validate(doc)

    async def append_violation_event(self, attempt_id: str, event_type: str) -> None:
        event = ViolationEvent(type=ViolationEventType(event_type))
        await self.violations.update_one(
            {"attempt_id": attempt_id},
            {"$push": {"events": self._event(event.type, event.timestamp)}},
            upsert=True,
        )

    async def create_incident(self, incident: Incident) -> Incident:
        doc = incident.model_dump(mode="json")
        doc["opened_at"] = incident.opened_at
        await self.incidents.insert_one(doc)
        return incident

    async def list_incidents(self, attempt_id: str) -> list[Incident]:
        cursor = self.incidents.find({"attempt_id": attempt_id}, {"_id": 0}).sort("opened_at", 1)
        docs = await cursor.to_list(length=10_000)
        return [Incident.model_validate(d) for d in docs]
