"""Checkpoint LMS - API v1 Router."""
from fastapi import APIRouter

from app.api.v1.lessons import router as lessons_router
from app.api.v1.dialogue import router as dialogue_router
from app.api.v1.tickets import router as tickets_router
from app.api.v1.presence import router as presence_router
from app.api.v1.quizzes import router as quizzes_router

api_router = APIRouter()

api_router.include_router(lessons_router)
api_router.include_router(dialogue_router)
api_router.include_router(tickets_router)
api_router.include_router(presence_router)
api_router.include_router(quizzes_router)
