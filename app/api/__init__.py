"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import answers, questionnaires

router = APIRouter()

router.include_router(questionnaires.router, tags=["questionnaires"])

router.include_router(answers.router, tags=["answers"])
