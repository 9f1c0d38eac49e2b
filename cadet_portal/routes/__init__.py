"""
cadet_portal/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from cadet_portal.routes import tasks, submissions, scores

router = APIRouter()

router.include_router(tasks.router)
router.include_router(submissions.router)
router.include_router(scores.router)
