from __future__ import annotations

from functools import lru_cache

from assessment.integrations.coordinator import CoordinatorClient
from assessment.integrations.gateways import Gateways
from assessment.services.grading import Grader, InternalGrader
from assessment.services.orchestrator import ExamOrchestrator
from assessment.services.packages import QuestionGenerator, TemplateQuestionGenerator
from assessment.services.proctoring import ProctoringEngine
from assessment.services.tracker import AttemptTracker
from assessment.settings import settings
from assessment.storage.inmemory import InMemoryAttemptLedger, InMemoryPackageStore, InMemoryProctoringStore
from assessment.storage.mongo import MongoPackageStore, MongoProctoringStore
from assessment.storage.repo import AttemptLedger, PackageStore, ProctoringStore
from assessment.storage.sql import SqlAttemptLedger


@lru_cache
def get_ledger() -> AttemptLedger:
    backend = (settings.ledger_backend or "inmemory").lower()
    if backend == "sql":
        return SqlAttemptLedger(settings.database_url)
    return InMemoryAttemptLedger()


@lru_cache
def get_package_store() -> PackageStore:
    backend = (settings.document_backend or "inmemory").lower()
    if backend == "mongo":
        return MongoPackageStore(settings.mongodb_uri, settings.mongodb_db)
    return InMemoryPackageStore()


@lru_cache
def get_proctoring_store() -> ProctoringStore:
    backend = (settings.document_backend or "inmemory").lower()
    if backend == "mongo":
        return MongoProctoringStore(settings.mongodb_uri, settings.mongodb_db)
    return InMemoryProctoringStore()


@lru_cache
def get_tracker() -> AttemptTracker:
    return AttemptTracker(settings.attempt_log_path)


@lru_cache
def get_gateways() -> Gateways:
    client = CoordinatorClient(
        base_url=settings.coordinator_url,
        service_name=settings.service_name,
        private_key=settings.private_key,
        coordinator_public_key=settings.coordinator_public_key,
        signature_prefix=settings.signature_prefix,
        timeout=settings.integration_timeout_seconds,
    )
    return Gateways(client)


@lru_cache
def get_grader() -> Grader:
    return InternalGrader(get_gateways().devlab)


@lru_cache
def get_question_generator() -> QuestionGenerator:
    return TemplateQuestionGenerator()


@lru_cache
def get_orchestrator() -> ExamOrchestrator:
    return ExamOrchestrator(
        ledger=get_ledger(),
        packages=get_package_store(),
        proctoring=get_proctoring_store(),
        tracker=get_tracker(),
        gateways=get_gateways(),
        grader=get_grader(),
        generator=get_question_generator(),
        settings=settings,
    )


@lru_cache
def get_proctoring_engine() -> ProctoringEngine:
    return ProctoringEngine(
        ledger=get_ledger(),
        store=get_proctoring_store(),
        packages=get_package_store(),
        incident_response=get_gateways().incident_response,
        strike_threshold=settings.strike_threshold,
    )
