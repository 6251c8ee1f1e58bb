"""Answer API endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Path

from app.api.deps import get_engine, http_error
from app.core.errors import ValidationError
from app.core.logging import get_logger
from app.core.questions import normalize_question
from app.core.schemas_answers import AnswerUpdate, SimilarAnswersRequest
from app.services.engine import Engine

logger = get_logger(__name__)

router = APIRouter()


@router.post("/answers/similar")
async def similar_answers(
    request: SimilarAnswersRequest,
    engine: Engine = Depends(get_engine),
) -> list[dict[str, Any]]:
    """Previously answered questions closest to each given question."""
    try:
        if engine.retriever is None:
            raise ValidationError("Similarity retrieval is not configured")
        results = await engine.retriever.get_similar_answers(
            [normalize_question(q) for q in request.questions]
        )
    except Exception as e:
        raise http_error(e, "find similar answers") from e
    return [r.model_dump(mode="json") for r in results]


@router.get("/answers/{answer_id}")
async def get_answer(
    answer_id: str = Path(..., description="Answer instance id"),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        answer = await engine.answers.require(answer_id)
    except Exception as e:
        raise http_error(e, "get answer") from e
    return answer.model_dump(mode="json")


@router.patch("/answers/{answer_id}")
async def update_answer(
    changes: AnswerUpdate,
    answer_id: str = Path(..., description="Answer instance id"),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    """Edit answer text and/or approval. Fields left out are unchanged."""
    try:
        answer = await engine.answers.update(answer_id, changes)
    except Exception as e:
        raise http_error(e, "update answer") from e
    return answer.model_dump(mode="json")


@router.post("/answers/{answer_id}/approve")
async def approve_answer(
    answer_id: str = Path(..., description="Answer instance id"),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        answer = await engine.answers.approve(answer_id)
    except Exception as e:
        raise http_error(e, "approve answer") from e
    return answer.model_dump(mode="json")


@router.post("/answers/{answer_id}/reprocess")
async def reprocess_answer(
    answer_id: str = Path(..., description="Answer instance id"),
    engine: Engine = Depends(get_engine),
) -> dict[str, Any]:
    """
    Regenerate a single answer.

    Raises:
        HTTPException 404: Answer not found
        HTTPException 502: No answer could be generated; the stored answer is unchanged
    """
    try:
        answer = await engine.answers.reprocess(answer_id)
    except Exception as e:
        raise http_error(e, "reprocess answer") from e
    return answer.model_dump(mode="json")
