"""Pydantic schemas for questionnaires and their lifecycle."""

import re
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from app.core.errors import InvalidStateTransition

NAME_PATTERN = re.compile(r"^[A-Za-z0-9 _-]+$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuestionnaireState(str, Enum):
    LOADED = "loaded"
    PROCESSING = "processing"
    ANSWERING = "answering"
    COMPLETED = "completed"
    ERROR = "error"


class QuestionnaireType(str, Enum):
    GENERIC_INBOUND_SALES_REQUEST = "generic_inbound_sales_request"
    RFP = "rfp"
    SECURITY_QUESTIONNAIRE = "security_questionnaire"
    GDPR_QUESTIONNAIRE = "gdpr_questionnaire"
    OTHER = "other"


class CustomerType(str, Enum):
    GMP = "gmp"
    CSP = "csp"
    RTDP = "rtdp"
    BRAND_SAFETY = "brand_safety"
    AI = "ai"
    OTHER = "other"


TERMINAL_STATES = frozenset({QuestionnaireState.COMPLETED, QuestionnaireState.ERROR})

ALLOWED_TRANSITIONS: dict[QuestionnaireState, frozenset[QuestionnaireState]] = {
    QuestionnaireState.LOADED: frozenset(
        {QuestionnaireState.PROCESSING, QuestionnaireState.ERROR}
    ),
    QuestionnaireState.PROCESSING: frozenset(
        {QuestionnaireState.ANSWERING, QuestionnaireState.ERROR}
    ),
    QuestionnaireState.ANSWERING: frozenset(
        {QuestionnaireState.COMPLETED, QuestionnaireState.ERROR}
    ),
    QuestionnaireState.COMPLETED: frozenset(),
    QuestionnaireState.ERROR: frozenset(),
}


class QuestionnaireCreate(BaseModel):
    """Request body for creating a questionnaire."""

    text: str
    name: str
    # Validated by the service so unknown values surface as a ValidationError
    type: str | None = None
    customer_type: str | None = None
    created_by: str | None = None


class Questionnaire(BaseModel):
    """A submitted document plus its extracted questions and processing state."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    text: str
    questions: list[str] | None = None
    type: QuestionnaireType = QuestionnaireType.OTHER
    customer_type: CustomerType = CustomerType.OTHER
    created_by: str | None = None
    state: QuestionnaireState = QuestionnaireState.LOADED
    error: str | None = None
    date_created: datetime = Field(default_factory=utc_now)
    date_completed: datetime | None = None
    approved_at: datetime | None = None
    # Derived on read from the answer store, never persisted
    total_answers_approved: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition_to(self, state: QuestionnaireState) -> bool:
        return state in ALLOWED_TRANSITIONS[self.state]

    def transition_to(self, state: QuestionnaireState, error: str | None = None) -> None:
        """Move to ``state``, stamping completion time on entry into COMPLETED.

        Raises:
            InvalidStateTransition: If the move is not in ALLOWED_TRANSITIONS
        """
        if not self.can_transition_to(state):
            raise InvalidStateTransition(
                f"Questionnaire {self.id} cannot move from {self.state.value} to {state.value}"
            )
        self.state = state
        if state == QuestionnaireState.COMPLETED:
            self.date_completed = utc_now()
        if state == QuestionnaireState.ERROR:
            self.error = error or "Unknown error"

    def to_row(self) -> dict:
        """Serialize for storage (derived fields excluded)."""
        return self.model_dump(mode="json", exclude={"total_answers_approved"})
