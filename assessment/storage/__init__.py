# Storage module
# Relational attempt ledger plus document stores for packages and proctoring

from assessment.storage.repo import AttemptLedger, PackageStore, ProctoringStore

__all__ = ["AttemptLedger", "PackageStore", "ProctoringStore"]
