import os

os.environ.setdefault("OBSERVABILITY_ENABLED", "false")

from types import SimpleNamespace

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from assessment.integrations.coordinator import CoordinatorClient
from assessment.integrations.gateways import Gateways
from assessment.services.grading import InternalGrader
from assessment.services.orchestrator import ExamOrchestrator
from assessment.services.packages import TemplateQuestionGenerator
from assessment.services.proctoring import ProctoringEngine
from assessment.services.tracker import AttemptTracker
from assessment.settings import Settings
from assessment.storage.inmemory import InMemoryAttemptLedger, InMemoryPackageStore, InMemoryProctoringStore
from assessment.workers.dispatch import TaskDispatcher


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def ec_keys():
    key = ec.generate_private_key(ec.SECP256R1())
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        observability_enabled=False,
        attempt_log_path=str(tmp_path / "attempt-log.json"),
        coordinator_url=None,
        require_camera=True,
    )


@pytest.fixture
def offline_gateways():
    # No coordinator URL: every gateway call degrades to its mock.
    return Gateways(CoordinatorClient(base_url=None, service_name="assessment-service"))


def build_components(settings, gateways, grader=None):
    ledger = InMemoryAttemptLedger()
    packages = InMemoryPackageStore()
    proctoring = InMemoryProctoringStore()
    tracker = AttemptTracker(settings.attempt_log_path)
    dispatcher = TaskDispatcher()

    orchestrator = ExamOrchestrator(
        ledger=ledger,
        packages=packages,
        proctoring=proctoring,
        tracker=tracker,
        gateways=gateways,
        grader=grader or InternalGrader(gateways.devlab),
        generator=TemplateQuestionGenerator(),
        settings=settings,
        schedule=dispatcher,
    )
    engine = ProctoringEngine(
        ledger=ledger,
        store=proctoring,
        packages=packages,
        incident_response=gateways.incident_response,
        strike_threshold=settings.strike_threshold,
        schedule=dispatcher,
    )
    return SimpleNamespace(
        ledger=ledger,
        packages=packages,
        proctoring=proctoring,
        tracker=tracker,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        engine=engine,
        gateways=gateways,
        settings=settings,
    )


@pytest.fixture
def components(test_settings, offline_gateways):
    return build_components(test_settings, offline_gateways)
