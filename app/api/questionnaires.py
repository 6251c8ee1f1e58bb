"""Questionnaire API endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel

from app.api.deps import get_engine, http_error
from app.core.logging import get_logger
from app.core.schemas_questionnaires import QuestionnaireCreate
from app.services.engine import Engine

logger = get_logger(__name__)

router = APIRouter()


class QuestionnaireListResponse(BaseModel):
    """A page of questionnaires."""

    questionnaires: list[dict[str, Any]]
    next_cursor: str | None = None


class DeleteQuestionnaireResponse(BaseModel):
    questionnaire_id: str
    answers_removed: int


@router.post("/questionnaires", status_code=201)
async def create_questionnaire(
    request: QuestionnaireCreate,
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    """
    Submit a questionnaire for processing.

    Extraction and answering happen in the background; poll the
    questionnaire for its state.

    Raises:
        HTTPException 400: Invalid or duplicate name, missing text
    """
    try:
        questionnaire = await engine.questionnaires.create(
            text=request.text,
            name=request.name,
            type=request.type,
            customer_type=request.customer_type,
            created_by=request.created_by,
        )
    except Exception as e:
        raise http_error(e, "create questionnaire") from e
    return questionnaire.model_dump(mode="json")


@router.get("/questionnaires", response_model=QuestionnaireListResponse)
async def list_questionnaires(
    name: str | None = Query(None, description="Only questionnaires whose name starts with this"),
    cursor: str | None = Query(None, description="Continuation cursor from a previous page"),
    engine: Engine = Depends(get_engine),
) -> QuestionnaireListResponse:
    """List questionnaires, newest first, or search by name prefix."""
    try:
        if name:
            found, next_cursor = await engine.questionnaires.search_by_name(name, cursor=cursor)
        else:
            found, next_cursor = await engine.questionnaires.list_all(), None
    except Exception as e:
        raise http_error(e, "list questionnaires") from e
    return QuestionnaireListResponse(
        questionnaires=[q.model_dump(mode="json") for q in found],
        next_cursor=next_cursor,
    )


@router.get("/questionnaires/by-name/{name}")
async def get_questionnaire_by_name(
    name: str = Path(..., description="Exact questionnaire name"),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        questionnaire = await engine.questionnaires.get_by_name(name)
    except Exception as e:
        raise http_error(e, "get questionnaire") from e
    if questionnaire is None:
        raise HTTPException(status_code=404, detail=f"Questionnaire {name!r} not found")
    return questionnaire.model_dump(mode="json")


@router.get("/questionnaires/{questionnaire_id}")
async def get_questionnaire(
    questionnaire_id: str = Path(..., description="Questionnaire id"),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    """Get a questionnaire including its approved-answer count."""
    try:
        questionnaire = await engine.questionnaires.require(questionnaire_id)
    except Exception as e:
        raise http_error(e, "get questionnaire") from e
    return questionnaire.model_dump(mode="json")


@router.get("/questionnaires/{questionnaire_id}/answers")
async def list_questionnaire_answers(
    questionnaire_id: str = Path(..., description="Questionnaire id"),
    engine: Engine = Depends(get_engine),
) -> list[dict[str, Any]]:
    try:
        await engine.questionnaires.require(questionnaire_id)
        answers = await engine.answers.list_for_questionnaire(questionnaire_id)
    except Exception as e:
        raise http_error(e, "list answers") from e
    return [a.model_dump(mode="json") for a in answers]


@router.post("/questionnaires/{questionnaire_id}/approve")
async def approve_questionnaire(
    questionnaire_id: str = Path(..., description="Questionnaire id"),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    """Approve a questionnaire and every answer it owns."""
    try:
        questionnaire = await engine.questionnaires.approve(questionnaire_id)
    except Exception as e:
        raise http_error(e, "approve questionnaire") from e
    return questionnaire.model_dump(mode="json")


@router.delete("/questionnaires/{questionnaire_id}", response_model=DeleteQuestionnaireResponse)
async def delete_questionnaire(
    questionnaire_id: str = Path(..., description="Questionnaire id"),
    remove_answers: bool = Query(False, description="Also delete the answers it owns"),
    force: bool = Query(False, description="Delete even while still processing"),
    engine: Engine = Depends(get_engine),
) -> DeleteQuestionnaireResponse:
    """
    Delete a questionnaire.

    Raises:
        HTTPException 404: Questionnaire not found
        HTTPException 409: Still processing and ``force`` not set
    """
    try:
        removed = await engine.questionnaires.delete(
            questionnaire_id, remove_answers=remove_answers, force=force
        )
    except Exception as e:
        raise http_error(e, "delete questionnaire") from e
    return DeleteQuestionnaireResponse(questionnaire_id=questionnaire_id, answers_removed=removed)
