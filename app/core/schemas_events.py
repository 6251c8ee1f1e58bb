"""Event topics and payload schemas for the processing pipeline."""

from pydantic import BaseModel, Field

QUESTIONNAIRE_CREATED = "questionnaire.created"
QUESTIONNAIRE_ANSWER_BATCH = "questionnaire.answer.batch"
ANSWER_CREATED = "answer.created"
ANSWER_PROCESS = "answer.process"


class AnswerBatchEvent(BaseModel):
    """One fan-out work item: a fixed-size slice of a questionnaire's questions."""

    questionnaire_id: str
    batch_index: int = Field(..., ge=0)
    total_batches: int = Field(..., ge=1)
    questions: list[str]

    @property
    def is_last(self) -> bool:
        return self.batch_index == self.total_batches - 1
