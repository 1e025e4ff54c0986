from fastapi import APIRouter

from assessment.api.attempts import router as attempts_router
from assessment.api.exams import router as exams_router
from assessment.api.integration import router as integration_router
from assessment.api.packages import router as packages_router
from assessment.api.policy import router as policy_router
from assessment.api.proctoring import router as proctoring_router
from assessment.api.results import router as results_router

router = APIRouter()
router.include_router(exams_router)
router.include_router(proctoring_router)
router.include_router(attempts_router)
router.include_router(packages_router)
router.include_router(results_router)
router.include_router(policy_router)
router.include_router(integration_router)
