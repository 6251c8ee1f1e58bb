"""Answer lifecycle: edits, approval, reprocessing and per-answer events."""

import random

from app.chains.answer_questions import AnswerGenerator
from app.core.config import Settings, get_settings
from app.core.errors import GenerationFailure, NotFoundError
from app.core.events import EventBus
from app.core.logging import get_logger
from app.core.questions import hash_question
from app.core.schemas_answers import Answer, AnswerUpdate, ApprovalState
from app.core.schemas_events import ANSWER_CREATED, ANSWER_PROCESS
from app.core.schemas_questionnaires import CustomerType, QuestionnaireState, QuestionnaireType
from app.db.answers import AnswerRepository
from app.db.questionnaires import QuestionnaireRepository
from app.services.convergence import complete_if_converged

logger = get_logger(__name__)


class AnswerService:
    """Answer operations and event reactions."""

    def __init__(
        self,
        answers: AnswerRepository,
        questionnaires: QuestionnaireRepository,
        bus: EventBus,
        generator: AnswerGenerator,
        settings: Settings | None = None,
    ):
        self.answers = answers
        self.questionnaires = questionnaires
        self.bus = bus
        self.generator = generator
        self.settings = settings or get_settings()

    def register(self) -> None:
        timeout = self.settings.HANDLER_TIMEOUT_SECONDS
        self.bus.subscribe(ANSWER_CREATED, self.on_created, timeout_seconds=timeout)
        self.bus.subscribe(ANSWER_PROCESS, self.on_process, timeout_seconds=timeout)

    async def get(self, answer_id: str) -> Answer | None:
        return await self.answers.get(answer_id)

    async def require(self, answer_id: str) -> Answer:
        answer = await self.answers.get(answer_id)
        if answer is None:
            raise NotFoundError(f"Answer {answer_id} not found")
        return answer

    async def list_for_questionnaire(self, questionnaire_id: str) -> list[Answer]:
        """Owned answers in question order, unknown questions last."""
        owned = await self.answers.list_by_questionnaire(questionnaire_id)
        questionnaire = await self.questionnaires.get(questionnaire_id)
        if questionnaire is None or not questionnaire.questions:
            return owned

        order = {}
        for position, question in enumerate(questionnaire.questions):
            order.setdefault(hash_question(question), position)
        return sorted(owned, key=lambda a: order.get(a.question_hash, len(order)))

    async def update(self, answer_id: str, changes: AnswerUpdate) -> Answer:
        """
        Apply a partial update and overwrite the stored record.

        Empty answer text is ignored rather than clearing the answer.

        Raises:
            NotFoundError: If the answer does not exist
        """
        answer = await self.require(answer_id)
        if changes.approval is not None:
            answer.approval = changes.approval
        if changes.answer is not None and changes.answer.strip():
            answer.answer = changes.answer.strip()

        await self.answers.save(answer)
        logger.info(
            f"Updated answer (approval={answer.approval.value})",
            extra={"answer_id": answer.id, "questionnaire_id": answer.questionnaire_id},
        )
        return answer

    async def approve(self, answer_id: str) -> Answer:
        return await self.update(answer_id, AnswerUpdate(approval=ApprovalState.APPROVED))

    async def approve_for_questionnaire(self, questionnaire_id: str) -> int:
        """Approve every owned answer; returns how many the questionnaire owns."""
        return await self.answers.approve_all(questionnaire_id)

    async def _types_for(
        self, answer: Answer
    ) -> tuple[QuestionnaireType, CustomerType]:
        if answer.questionnaire_id:
            questionnaire = await self.questionnaires.get(answer.questionnaire_id)
            if questionnaire is not None:
                return questionnaire.type, questionnaire.customer_type
        return QuestionnaireType.OTHER, CustomerType.OTHER

    async def reprocess(self, answer_id: str) -> Answer:
        """
        Regenerate one answer with batch mode on a single question.

        The stored answer is only replaced when generation produced text.

        Raises:
            NotFoundError: If the answer does not exist
            GenerationFailure: If no answer was generated for the question
        """
        answer = await self.require(answer_id)
        context = {"answer_id": answer.id, "questionnaire_id": answer.questionnaire_id}
        type, customer_type = await self._types_for(answer)

        generated = await self.generator.answer_question_batch(
            [answer.question],
            type=type,
            customer_type=customer_type,
            job_id=answer.questionnaire_id,
        )
        text = generated.get(answer.question)
        if text is None and len(generated) == 1:
            # One question asked, so a lone reworded key answers it
            [(key, text)] = generated.items()
            logger.warning(f"Reprocess matched reworded key {key[:60]!r} by position", extra=context)

        if not text or not text.strip():
            logger.error(f"Reprocess produced no answer for {answer.question[:60]!r}", extra=context)
            raise GenerationFailure(f"Could not reprocess answer {answer.id}")

        answer.answer = text.strip()
        await self.answers.save(answer)
        logger.info("Reprocessed answer", extra=context)

        if answer.questionnaire_id:
            await complete_if_converged(self.questionnaires, self.answers, answer.questionnaire_id)
        return answer

    async def on_created(self, payload: dict) -> None:
        """Schedule per-answer processing and nudge the owner into ANSWERING."""
        answer = Answer.model_validate(payload)
        jitter_ms = random.randint(0, self.settings.ANSWER_EVENT_MAX_JITTER_MS)
        await self.bus.publish(ANSWER_PROCESS, {"id": answer.id}, after_ms=jitter_ms)

        if not answer.questionnaire_id:
            return
        questionnaire = await self.questionnaires.get(answer.questionnaire_id)
        if questionnaire is not None and questionnaire.state == QuestionnaireState.PROCESSING:
            questionnaire.transition_to(QuestionnaireState.ANSWERING)
            if not await self.questionnaires.save_if_state(questionnaire, QuestionnaireState.PROCESSING):
                return
            logger.info(
                "Questionnaire is answering",
                extra={"questionnaire_id": questionnaire.id, "answer_id": answer.id},
            )

    async def on_process(self, payload: dict) -> None:
        answer = await self.answers.get(payload["id"])
        if answer is None:
            logger.debug(f"Answer {payload['id']} vanished before processing")
            return

        if answer.questionnaire_id:
            # Batches answer owned rows; this event only re-checks completion
            await complete_if_converged(self.questionnaires, self.answers, answer.questionnaire_id)
            return

        if answer.is_answered:
            return

        answer.answer = await self.generator.answer_question(answer.question)
        await self.answers.save(answer)
        logger.info("Answered standalone question", extra={"answer_id": answer.id})
