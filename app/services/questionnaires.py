"""Questionnaire lifecycle: creation, extraction, batch fan-out and completion.

States move LOADED -> PROCESSING -> ANSWERING -> COMPLETED, with ERROR
reachable on failure. Reactions are driven by events and are safe to run
more than once: each re-fetches the questionnaire and acts only from the
state it expects.
"""

from app.chains.answer_questions import AnswerGenerator
from app.chains.extract_questions import QuestionExtractor
from app.core.config import Settings, get_settings
from app.core.errors import (
    ExtractionFailure,
    GenerationFailure,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from app.core.events import EventBus
from app.core.logging import get_logger
from app.core.questions import dedupe_questions, normalize_question, split_batches
from app.core.schemas_answers import ApprovalState
from app.core.schemas_events import (
    QUESTIONNAIRE_ANSWER_BATCH,
    QUESTIONNAIRE_CREATED,
    AnswerBatchEvent,
)
from app.core.schemas_questionnaires import (
    NAME_PATTERN,
    CustomerType,
    Questionnaire,
    QuestionnaireState,
    QuestionnaireType,
    utc_now,
)
from app.db.answers import AnswerRepository
from app.db.questionnaires import QuestionnaireRepository
from app.services.convergence import complete_if_converged

logger = get_logger(__name__)

EXTRACTION_ERROR = "Error extracting questions"
BATCH_ERROR = "Error answering batch"
APPROVE_ATTEMPTS = 3


def _coerce_enum(enum_cls, value, field: str):
    if value is None:
        return enum_cls.OTHER
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field} {value!r}; expected one of: {allowed}") from None


class QuestionnaireService:
    """Questionnaire operations and event reactions."""

    def __init__(
        self,
        questionnaires: QuestionnaireRepository,
        answers: AnswerRepository,
        bus: EventBus,
        extractor: QuestionExtractor,
        generator: AnswerGenerator,
        settings: Settings | None = None,
    ):
        self.questionnaires = questionnaires
        self.answers = answers
        self.bus = bus
        self.extractor = extractor
        self.generator = generator
        self.settings = settings or get_settings()

    def register(self) -> None:
        """Subscribe the questionnaire reactions to the bus."""
        timeout = self.settings.HANDLER_TIMEOUT_SECONDS
        self.bus.subscribe(QUESTIONNAIRE_CREATED, self.on_created, timeout_seconds=timeout)
        self.bus.subscribe(QUESTIONNAIRE_ANSWER_BATCH, self.on_answer_batch, timeout_seconds=timeout)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create(
        self,
        text: str,
        name: str,
        type: QuestionnaireType | str | None = None,
        customer_type: CustomerType | str | None = None,
        created_by: str | None = None,
    ) -> Questionnaire:
        """
        Validate and persist a new questionnaire in state LOADED.

        Extraction starts asynchronously once the row is written.

        Raises:
            ValidationError: On a missing/invalid/duplicate name, missing text
                or an unknown type / customer type
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        if not NAME_PATTERN.match(name):
            raise ValidationError(
                "Name may only contain letters, digits, spaces, hyphens and underscores"
            )
        if not text or not text.strip():
            raise ValidationError("Text is required")

        questionnaire_type = _coerce_enum(QuestionnaireType, type, "questionnaire type")
        customer = _coerce_enum(CustomerType, customer_type, "customer type")

        if await self.questionnaires.get_by_name(name):
            raise ValidationError(f"A questionnaire named {name!r} already exists")

        questionnaire = Questionnaire(
            name=name,
            text=text,
            type=questionnaire_type,
            customer_type=customer,
            created_by=created_by,
        )
        await self.questionnaires.insert(questionnaire)
        logger.info(
            f"Created questionnaire {name}",
            extra={"questionnaire_id": questionnaire.id},
        )
        return questionnaire

    async def get(self, questionnaire_id: str) -> Questionnaire | None:
        """Get a questionnaire with its approved-answer count."""
        questionnaire = await self.questionnaires.get(questionnaire_id)
        if questionnaire is None:
            return None
        owned = await self.answers.list_by_questionnaire(questionnaire_id)
        questionnaire.total_answers_approved = sum(
            1 for a in owned if a.approval == ApprovalState.APPROVED
        )
        return questionnaire

    async def require(self, questionnaire_id: str) -> Questionnaire:
        questionnaire = await self.get(questionnaire_id)
        if questionnaire is None:
            raise NotFoundError(f"Questionnaire {questionnaire_id} not found")
        return questionnaire

    async def get_by_name(self, name: str) -> Questionnaire | None:
        return await self.questionnaires.get_by_name(name)

    async def search_by_name(
        self, prefix: str, cursor: str | None = None
    ) -> tuple[list[Questionnaire], str | None]:
        return await self.questionnaires.search_by_name(prefix, cursor=cursor)

    async def list_all(self) -> list[Questionnaire]:
        questionnaires = await self.questionnaires.list_all()
        return sorted(questionnaires, key=lambda q: q.date_created, reverse=True)

    async def approve(self, questionnaire_id: str) -> Questionnaire:
        """
        Stamp ``approved_at`` and approve every answer the questionnaire owns.

        Raises:
            NotFoundError: If the questionnaire does not exist
        """
        questionnaire = await self.require(questionnaire_id)
        approved_at = utc_now()
        # Retry on a concurrent state change so a stale copy never rolls the state back
        for _ in range(APPROVE_ATTEMPTS):
            questionnaire.approved_at = approved_at
            if await self.questionnaires.save_if_state(questionnaire, questionnaire.state):
                break
            questionnaire = await self.require(questionnaire_id)
        else:
            raise InvalidStateTransition(
                f"Questionnaire {questionnaire_id} kept changing state while being approved"
            )

        questionnaire.total_answers_approved = await self.answers.approve_all(questionnaire_id)
        logger.info(
            f"Approved questionnaire {questionnaire.name}",
            extra={"questionnaire_id": questionnaire_id},
        )
        return questionnaire

    async def delete(
        self,
        questionnaire_id: str,
        remove_answers: bool = False,
        force: bool = False,
    ) -> int:
        """
        Delete a questionnaire, optionally with the answers it owns.

        Returns:
            Number of answers removed

        Raises:
            NotFoundError: If the questionnaire does not exist
            InvalidStateTransition: If it is still processing and ``force`` is not set
        """
        questionnaire = await self.questionnaires.get(questionnaire_id)
        if questionnaire is None:
            raise NotFoundError(f"Questionnaire {questionnaire_id} not found")
        if not questionnaire.is_terminal and not force:
            raise InvalidStateTransition(
                f"Cannot delete questionnaire while in {questionnaire.state.value} state"
            )

        await self.questionnaires.remove(questionnaire_id)
        logger.info(
            f"Deleted questionnaire {questionnaire.name}",
            extra={"questionnaire_id": questionnaire_id},
        )

        removed = 0
        if remove_answers:
            for answer in await self.answers.list_by_questionnaire(questionnaire_id):
                await self.answers.delete(answer)
                removed += 1
            logger.info(
                f"Deleted {removed} answers for questionnaire {questionnaire.name}",
                extra={"questionnaire_id": questionnaire_id},
            )
        return removed

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def on_created(self, payload: dict) -> None:
        """Extract questions, create pending answers and fan out the batches."""
        questionnaire = await self.questionnaires.get(payload["id"])
        if questionnaire is None:
            logger.warning(f"Questionnaire {payload['id']} vanished before processing")
            return

        if questionnaire.state == QuestionnaireState.PROCESSING and questionnaire.questions:
            # A previous delivery stored the extraction and then died; resume it
            logger.info(
                f"Resuming questionnaire {questionnaire.name} after extraction",
                extra={"questionnaire_id": questionnaire.id},
            )
        elif questionnaire.state == QuestionnaireState.LOADED:
            try:
                extracted = await self._extract(questionnaire)
            except ExtractionFailure as e:
                logger.error(
                    f"{EXTRACTION_ERROR} for {questionnaire.name}: {e}",
                    extra={"questionnaire_id": questionnaire.id},
                )
                questionnaire.transition_to(
                    QuestionnaireState.ERROR, error=f"{EXTRACTION_ERROR}: {e}"
                )
                await self.questionnaires.save_if_state(questionnaire, QuestionnaireState.LOADED)
                return
            if not extracted:
                return
        else:
            logger.debug(
                f"Skipping creation reaction in state {questionnaire.state.value}",
                extra={"questionnaire_id": questionnaire.id},
            )
            return

        questions = dedupe_questions(questionnaire.questions or [])
        await self.answers.batch_create(
            {question: None for question in questions}, questionnaire_id=questionnaire.id
        )
        await self.dispatch_batches(questionnaire)

    async def _extract(self, questionnaire: Questionnaire) -> bool:
        """
        Store extracted questions and move to PROCESSING.

        Returns:
            False if a concurrent delivery moved the questionnaire out of LOADED first

        Raises:
            ExtractionFailure: If the extractor raised or found no questions
        """
        logger.info(
            f"Processing {questionnaire.name}...",
            extra={"questionnaire_id": questionnaire.id},
        )
        try:
            questions = await self.extractor.extract_questions(
                questionnaire.text, job_id=questionnaire.id
            )
        except Exception as e:
            raise ExtractionFailure(f"extractor raised {type(e).__name__}: {e}") from e

        # Normalized once here; the stored list is canonical from now on
        questions = dedupe_questions([normalize_question(q) for q in questions or []])
        if not questions:
            raise ExtractionFailure("no questions found")

        questionnaire.questions = questions
        questionnaire.transition_to(QuestionnaireState.PROCESSING)
        return await self.questionnaires.save_if_state(questionnaire, QuestionnaireState.LOADED)

    async def dispatch_batches(self, questionnaire: Questionnaire) -> list[AnswerBatchEvent]:
        """
        Move to ANSWERING and publish one staggered event per batch of questions.

        Returns:
            The published batch events, in dispatch order
        """
        # The answer.created reaction may already have advanced the state
        current = await self.questionnaires.get(questionnaire.id)
        if current is not None and current.state == QuestionnaireState.PROCESSING:
            current.transition_to(QuestionnaireState.ANSWERING)
            if not await self.questionnaires.save_if_state(current, QuestionnaireState.PROCESSING):
                current = await self.questionnaires.get(questionnaire.id)
        if current is None:
            logger.warning(
                "Questionnaire vanished before dispatch", extra={"questionnaire_id": questionnaire.id}
            )
            return []
        if current.state != QuestionnaireState.ANSWERING:
            logger.warning(
                f"Not dispatching batches in state {current.state.value}",
                extra={"questionnaire_id": current.id},
            )
            return []

        questions = dedupe_questions(current.questions or [])
        batches = split_batches(questions, self.settings.ANSWER_BATCH_SIZE)
        logger.info(
            f"Answering {len(questions)} questions in {len(batches)} batches",
            extra={"questionnaire_id": current.id},
        )

        events = []
        for index, batch in enumerate(batches):
            event = AnswerBatchEvent(
                questionnaire_id=current.id,
                batch_index=index,
                total_batches=len(batches),
                questions=batch,
            )
            await self.bus.publish(
                QUESTIONNAIRE_ANSWER_BATCH,
                event.model_dump(),
                after_ms=index * self.settings.BATCH_STAGGER_MS,
            )
            events.append(event)
        return events

    async def on_answer_batch(self, payload: dict) -> None:
        """Answer one batch and roll the questionnaire forward."""
        event = AnswerBatchEvent.model_validate(payload)
        context = {"questionnaire_id": event.questionnaire_id, "batch_index": event.batch_index}

        questionnaire = await self.questionnaires.get(event.questionnaire_id)
        if questionnaire is None or questionnaire.state != QuestionnaireState.ANSWERING:
            logger.info(
                "Ignoring batch for questionnaire that is not answering",
                extra=context,
            )
            return

        try:
            answers = await self.generator.answer_question_batch(
                event.questions,
                type=questionnaire.type,
                customer_type=questionnaire.customer_type,
                job_id=questionnaire.id,
            )
            if not answers:
                raise GenerationFailure("Generator returned no answers")
        except Exception as e:
            logger.error(f"{BATCH_ERROR}: {e}", extra=context)
            await self._fail(event.questionnaire_id, f"{BATCH_ERROR} {event.batch_index}: {e}")
            return

        requested = set(event.questions)
        unexpected = [q for q in answers if q not in requested]
        if unexpected:
            logger.warning(
                f"Dropping {len(unexpected)} answers for questions not in the batch",
                extra=context,
            )
        matched = {q: a for q, a in answers.items() if q in requested}
        missing = len(requested) - len(matched)
        if missing:
            logger.warning(f"{missing} questions in batch came back unanswered", extra=context)

        await self.answers.batch_create(matched, questionnaire_id=event.questionnaire_id)

        if event.is_last:
            logger.info("Last batch answered", extra=context)
        await complete_if_converged(self.questionnaires, self.answers, event.questionnaire_id)

    async def _fail(self, questionnaire_id: str, message: str) -> None:
        questionnaire = await self.questionnaires.get(questionnaire_id)
        if questionnaire is None or not questionnaire.can_transition_to(QuestionnaireState.ERROR):
            return
        previous = questionnaire.state
        questionnaire.transition_to(QuestionnaireState.ERROR, error=message)
        await self.questionnaires.save_if_state(questionnaire, previous)
