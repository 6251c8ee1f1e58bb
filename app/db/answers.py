"""Answer persistence over the keyed store.

Each answer is stored under ``answer:{id}`` with two lookup paths:

- ``label1 = questionnaire:{questionnaire_id}:{question_hash}`` (owned answers only)
- ``label2 = answerhash:{question_hash}`` (every answer, for similarity lookups)

Writes are upserts by question hash within a questionnaire, so replaying the
same batch leaves the answer set unchanged.
"""

from collections.abc import Mapping

from app.core.errors import DataIntegrityError
from app.core.events import EventBus
from app.core.logging import get_logger
from app.core.questions import canonical_question, hash_question
from app.core.schemas_answers import Answer, ApprovalState
from app.core.schemas_events import ANSWER_CREATED
from app.db.kv_store import KeyValueStore, StoreItem

logger = get_logger(__name__)

PREFIX = "answer"
QUESTIONNAIRE_LABEL = "label1"
HASH_LABEL = "label2"


def answer_key(answer_id: str) -> str:
    return f"{PREFIX}:{answer_id}"


def questionnaire_label(questionnaire_id: str, question_hash: str = "") -> str:
    return f"questionnaire:{questionnaire_id}:{question_hash}"


def hash_label(question_hash: str) -> str:
    return f"answerhash:{question_hash}"


def _labels(answer: Answer) -> dict[str, str]:
    labels = {HASH_LABEL: hash_label(answer.question_hash)}
    if answer.questionnaire_id:
        labels[QUESTIONNAIRE_LABEL] = questionnaire_label(
            answer.questionnaire_id, answer.question_hash
        )
    return labels


class AnswerRepository:
    """Stateless repository; all mutable state lives in the store."""

    def __init__(self, store: KeyValueStore, bus: EventBus):
        self.store = store
        self.bus = bus

    async def create(
        self,
        question: str,
        questionnaire_id: str | None = None,
        answer: str | None = None,
    ) -> Answer:
        """Create (or upsert by hash) a single answer."""
        written = await self.batch_create({question: answer}, questionnaire_id=questionnaire_id)
        return written[0]

    async def batch_create(
        self,
        answers: Mapping[str, str | None],
        questionnaire_id: str | None = None,
        emit_events: bool = True,
    ) -> list[Answer]:
        """
        Upsert many question -> answer pairs.

        Questions are taken as canonical text (trimmed only) and deduplicated by
        hash. An existing row with the same hash (in the same questionnaire, or
        among seed rows when no questionnaire is given) keeps its instance id
        (and approval), and a ``None`` answer never clears an existing answer.
        Writes go out in chunks of at most the store's write limit.

        Args:
            answers: Mapping of question text to answer text (None = pending)
            questionnaire_id: Owning questionnaire, None for seed answers
            emit_events: Publish ``answer.created`` for rows that did not exist

        Returns:
            The written answers, in input order
        """
        existing: dict[str, Answer] = {}
        if questionnaire_id:
            existing = {
                a.question_hash: a for a in await self.list_by_questionnaire(questionnaire_id)
            }
        else:
            for question_hash in {hash_question(q) for q in answers if canonical_question(q)}:
                seed = await self.get_seed_by_hash(question_hash)
                if seed:
                    existing[question_hash] = seed

        records: dict[str, Answer] = {}
        created: list[str] = []
        for raw_question, raw_answer in answers.items():
            question = canonical_question(raw_question)
            if not question:
                continue
            text = raw_answer.strip() if raw_answer and raw_answer.strip() else None
            question_hash = hash_question(question)

            current = records.get(question_hash) or existing.get(question_hash)
            if current:
                record = current.model_copy(update={"answer": text or current.answer})
            else:
                record = Answer.for_question(question, questionnaire_id, text)
                created.append(question_hash)
            records[question_hash] = record

        await self._write_many(list(records.values()))

        logger.info(
            f"Saved {len(records)} answers ({len(created)} new)",
            extra={"questionnaire_id": questionnaire_id},
        )

        if emit_events:
            for question_hash in created:
                await self.bus.publish(ANSWER_CREATED, records[question_hash].to_row())

        return list(records.values())

    async def _write_many(self, answers: list[Answer]) -> None:
        items = [
            StoreItem(key=answer_key(a.id), value=a.to_row(), labels=_labels(a)) for a in answers
        ]
        limit = self.store.write_limit
        for start in range(0, len(items), limit):
            await self.store.set_many(items[start : start + limit])

    async def approve_all(self, questionnaire_id: str) -> int:
        """Approve every answer owned by a questionnaire.

        Returns:
            Number of answers owned (all now approved)
        """
        owned = await self.list_by_questionnaire(questionnaire_id)
        pending = [a for a in owned if a.approval != ApprovalState.APPROVED]
        for answer in pending:
            answer.approval = ApprovalState.APPROVED
        await self._write_many(pending)
        logger.info(
            f"Approved {len(pending)} answers ({len(owned)} owned)",
            extra={"questionnaire_id": questionnaire_id},
        )
        return len(owned)

    async def save(self, answer: Answer) -> None:
        """Overwrite the stored record (last write wins)."""
        await self.store.set(answer_key(answer.id), answer.to_row(), labels=_labels(answer))

    async def get(self, answer_id: str) -> Answer | None:
        row = await self.store.get(answer_key(answer_id))
        return Answer.model_validate(row) if row else None

    async def get_by_hash(self, question_hash: str) -> Answer | None:
        """First stored answer for a question hash, across questionnaires and seed data."""
        page = await self.store.get_by_label(HASH_LABEL, hash_label(question_hash))
        return Answer.model_validate(page.items[0].value) if page.items else None

    async def get_seed_by_hash(self, question_hash: str) -> Answer | None:
        """The seed answer (no owning questionnaire) for a question hash."""
        for item in await self.store.iter_label(HASH_LABEL, hash_label(question_hash)):
            answer = Answer.model_validate(item.value)
            if answer.questionnaire_id is None:
                return answer
        return None

    async def list_by_questionnaire(self, questionnaire_id: str) -> list[Answer]:
        """Every answer owned by a questionnaire (all pages)."""
        items = await self.store.iter_label(
            QUESTIONNAIRE_LABEL, f"{questionnaire_label(questionnaire_id)}*"
        )
        return [Answer.model_validate(item.value) for item in items]

    async def get_by_questionnaire_and_hash(
        self, questionnaire_id: str, question_hash: str
    ) -> Answer | None:
        """
        Raises:
            DataIntegrityError: If more than one answer matches
        """
        page = await self.store.get_by_label(
            QUESTIONNAIRE_LABEL, questionnaire_label(questionnaire_id, question_hash)
        )
        if len(page.items) > 1:
            raise DataIntegrityError(
                f"Multiple answers found for questionnaire {questionnaire_id} "
                f"and question hash {question_hash}"
            )
        return Answer.model_validate(page.items[0].value) if page.items else None

    async def delete(self, answer: Answer) -> None:
        await self.store.remove(answer_key(answer.id))
