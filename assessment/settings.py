from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Assessment Service"
    env: str = "dev"
    cors_origins: str = "http://localhost:3000"
    log_level: str = "INFO"

    # Relational attempt ledger
    ledger_backend: str = "inmemory"  # inmemory|sql
    database_url: str = "sqlite+aiosqlite:///./assessment.db"

    # Document store (question packages + proctoring)
    document_backend: str = "inmemory"  # inmemory|mongo
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "assessment"

    # File-backed retake ledger
    attempt_log_path: str = "artifacts/attempt-log.json"

    # Coordinator protocol
    service_name: str = "assessment-service"
    coordinator_url: str | None = None
    private_key: str | None = None
    coordinator_public_key: str | None = None
    signature_prefix: str = "educoreai"
    integration_timeout_seconds: float = 6.0

    # Exam policy defaults (used when the directory policy omits a field)
    default_passing_grade: float = 70.0
    default_postcourse_max_attempts: int = 3
    default_retry_cooldown_hours: float = 24.0
    default_grade_precision: int = 2
    minutes_per_question: int = 4
    strike_threshold: int = 3
    require_camera: bool = True
    coding_questions_per_exam: int = 2

    # Observability (OpenTelemetry)
    observability_enabled: bool = True
    otel_service_name: str = "assessment-service"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_console: bool = False
    otel_sample_rate: float = 0.1


settings = Settings()
