"""Pydantic schemas for answers and similarity lookups."""

from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from app.core.questions import canonical_question, hash_question


class ApprovalState(str, Enum):
    UNSET = "unset"
    APPROVED = "approved"
    REJECTED = "rejected"


class Answer(BaseModel):
    """A single question/answer record.

    ``questionnaire_id`` is unset for seed answers imported from historical
    questionnaires; those are used for retrieval only.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    question_hash: str
    questionnaire_id: str | None = None
    question: str
    answer: str | None = None
    approval: ApprovalState = ApprovalState.UNSET

    @classmethod
    def for_question(
        cls,
        question: str,
        questionnaire_id: str | None = None,
        answer: str | None = None,
    ) -> "Answer":
        question = canonical_question(question)
        return cls(
            question_hash=hash_question(question),
            questionnaire_id=questionnaire_id,
            question=question,
            answer=answer.strip() if answer else None,
        )

    @property
    def approved(self) -> bool | None:
        if self.approval == ApprovalState.UNSET:
            return None
        return self.approval == ApprovalState.APPROVED

    @property
    def is_answered(self) -> bool:
        return bool(self.answer and self.answer.strip())

    def to_row(self) -> dict:
        return self.model_dump(mode="json")


class AnswerUpdate(BaseModel):
    """Partial update of an answer; unset fields are left alone."""

    approval: ApprovalState | None = None
    answer: str | None = None


class SimilarAnswer(BaseModel):
    question: str
    answer: str | None = None
    # Similarity score from the index; higher is closer
    distance: float


class SimilarQuestion(BaseModel):
    question: str
    neighbors: list[SimilarAnswer] = Field(default_factory=list)


class SimilarAnswersRequest(BaseModel):
    questions: list[str] = Field(..., min_length=1)
