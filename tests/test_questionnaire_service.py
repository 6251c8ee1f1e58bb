"""Behavioral tests for the questionnaire pipeline over in-memory collaborators."""

import pytest

from app.core.errors import InvalidStateTransition, NotFoundError, ValidationError
from app.core.schemas_answers import ApprovalState
from app.core.questions import split_batches
from app.core.schemas_events import (
    QUESTIONNAIRE_ANSWER_BATCH,
    QUESTIONNAIRE_CREATED,
    AnswerBatchEvent,
)
from app.core.schemas_questionnaires import (
    CustomerType,
    Questionnaire,
    QuestionnaireState,
    QuestionnaireType,
)
from app.db.answers import AnswerRepository
from app.db.questionnaires import QuestionnaireRepository
from app.services.convergence import complete_if_converged
from app.services.engine import build_engine
from app.services.questionnaires import QuestionnaireService
from tests.fakes.fake_llm import FakeExtractor, FakeGenerator, RecordingEventBus
from tests.fakes.fake_store import YieldingKeyValueStore

QUESTIONS = [f"Question number {i}?" for i in range(23)]


async def _run(engine, name="Acme RFI", **kwargs) -> Questionnaire:
    questionnaire = await engine.questionnaires.create(text="raw questionnaire text", name=name, **kwargs)
    await engine.bus.drain()
    return await engine.questionnaires.get(questionnaire.id)


def _completed_writes(store, questionnaire_id: str) -> list[str]:
    """``date_completed`` of every write that stored the questionnaire as completed."""
    return [
        value["date_completed"]
        for value in store.written_values(f"questionnaire:{questionnaire_id}")
        if value["state"] == QuestionnaireState.COMPLETED.value
    ]


# ──────────────────────────────────────────────────────────────────────
# create
# ──────────────────────────────────────────────────────────────────────


class TestCreate:
    @pytest.mark.asyncio
    async def test_persists_loaded_and_publishes(self, store, settings):
        bus = RecordingEventBus()
        repo = QuestionnaireRepository(store, bus)
        service = QuestionnaireService(
            repo, AnswerRepository(store, bus), bus, FakeExtractor([]), FakeGenerator(), settings
        )

        questionnaire = await service.create(text="Q?", name="Acme RFI", type="rfp")

        stored = await repo.get(questionnaire.id)
        assert stored.state == QuestionnaireState.LOADED
        assert stored.type == QuestionnaireType.RFP
        assert stored.customer_type == CustomerType.OTHER
        assert bus.topics() == [QUESTIONNAIRE_CREATED]
        assert bus.published[0][1]["id"] == questionnaire.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   ", "bad/name", "semi;colon", "ünïcode"])
    async def test_rejects_invalid_names(self, engine, name):
        with pytest.raises(ValidationError):
            await engine.questionnaires.create(text="Q?", name=name)

    @pytest.mark.asyncio
    async def test_rejects_duplicate_name(self, engine):
        await engine.questionnaires.create(text="Q?", name="Acme RFI")
        with pytest.raises(ValidationError, match="already exists"):
            await engine.questionnaires.create(text="Q?", name="Acme RFI")

    @pytest.mark.asyncio
    async def test_rejects_empty_text(self, engine):
        with pytest.raises(ValidationError, match="Text"):
            await engine.questionnaires.create(text="  ", name="Acme RFI")

    @pytest.mark.asyncio
    async def test_rejects_unknown_types(self, engine):
        with pytest.raises(ValidationError, match="questionnaire type"):
            await engine.questionnaires.create(text="Q?", name="A", type="poem")
        with pytest.raises(ValidationError, match="customer type"):
            await engine.questionnaires.create(text="Q?", name="B", customer_type="alien")


# ──────────────────────────────────────────────────────────────────────
# Pipeline
# ──────────────────────────────────────────────────────────────────────


class TestPipeline:
    @pytest.mark.asyncio
    async def test_happy_path_completes(self, engine, extractor, generator):
        extractor.questions = QUESTIONS

        questionnaire = await _run(engine)

        assert questionnaire.state == QuestionnaireState.COMPLETED
        assert questionnaire.date_completed is not None
        assert questionnaire.questions == QUESTIONS
        answers = await engine.answers.list_for_questionnaire(questionnaire.id)
        assert len(answers) == 23
        assert all(a.answer == f"Answer: {a.question}" for a in answers)
        assert [len(call) for call in generator.batch_calls] == [10, 10, 3]

    @pytest.mark.asyncio
    async def test_duplicate_questions_collapse_to_one_row(self, engine, extractor):
        extractor.questions = ["Uptime?", "  ?Uptime?", "Pricing?"]

        questionnaire = await _run(engine)

        answers = await engine.answers.list_for_questionnaire(questionnaire.id)
        assert sorted(a.question for a in answers) == ["Pricing?", "Uptime?"]
        assert questionnaire.state == QuestionnaireState.COMPLETED

    @pytest.mark.asyncio
    async def test_extraction_failure_sets_error(self, engine, extractor, store):
        extractor.questions = None

        questionnaire = await _run(engine)

        assert questionnaire.state == QuestionnaireState.ERROR
        assert questionnaire.error.startswith("Error extracting questions")
        assert store.values_with_prefix("answer:") == []

    @pytest.mark.asyncio
    async def test_extraction_exception_sets_error(self, engine, extractor):
        extractor.error = RuntimeError("provider down")

        questionnaire = await _run(engine)

        assert questionnaire.state == QuestionnaireState.ERROR
        assert "Error extracting questions" in questionnaire.error

    @pytest.mark.asyncio
    async def test_empty_extraction_sets_error(self, engine, extractor):
        extractor.questions = []

        questionnaire = await _run(engine)

        assert questionnaire.state == QuestionnaireState.ERROR

    @pytest.mark.asyncio
    async def test_batch_failure_sets_error_and_stops_other_batches(self, engine, extractor, generator):
        extractor.questions = QUESTIONS
        generator.fail_on_call = {1}

        questionnaire = await _run(engine)

        assert questionnaire.state == QuestionnaireState.ERROR
        assert questionnaire.error.startswith("Error answering batch")
        assert questionnaire.date_completed is None
        # The batch after the failure saw ERROR and did nothing
        assert len(generator.batch_calls) == 2

    @pytest.mark.asyncio
    async def test_partial_batch_leaves_questionnaire_answering(self, engine, extractor, generator):
        extractor.questions = ["Q1?", "Q2?", "Q3?"]
        generator.skip = {"Q2?"}

        questionnaire = await _run(engine)

        assert questionnaire.state == QuestionnaireState.ANSWERING
        answers = {a.question: a for a in await engine.answers.list_for_questionnaire(questionnaire.id)}
        assert answers["Q2?"].answer is None

        # Reprocessing the missing answer converges the questionnaire
        generator.skip = set()
        await engine.answers.reprocess(answers["Q2?"].id)
        refreshed = await engine.questionnaires.get(questionnaire.id)
        assert refreshed.state == QuestionnaireState.COMPLETED

    @pytest.mark.asyncio
    async def test_single_pending_question_does_not_converge(self, engine):
        questionnaire = Questionnaire(
            name="Single", text="...", questions=["Only question?"], state=QuestionnaireState.ANSWERING
        )
        await engine.questionnaire_repo.save(questionnaire)
        await engine.answer_repo.batch_create(
            {"Only question?": None}, questionnaire_id=questionnaire.id, emit_events=False
        )

        assert not await complete_if_converged(
            engine.questionnaire_repo, engine.answer_repo, questionnaire.id
        )
        assert (await engine.questionnaires.get(questionnaire.id)).state == QuestionnaireState.ANSWERING

    @pytest.mark.asyncio
    async def test_leading_punctuation_run_completes(self, engine, extractor):
        extractor.questions = ["...and do you encrypt data at rest?", "Uptime?"]

        questionnaire = await _run(engine)

        assert questionnaire.state == QuestionnaireState.COMPLETED
        answers = {a.question: a.answer for a in await engine.answers.list_for_questionnaire(questionnaire.id)}
        assert answers == {
            "..and do you encrypt data at rest?": "Answer: ..and do you encrypt data at rest?",
            "Uptime?": "Answer: Uptime?",
        }

    @pytest.mark.asyncio
    async def test_created_reaction_stores_pending_rows_before_batches_run(self, store, settings):
        bus = RecordingEventBus()
        repo = QuestionnaireRepository(store, bus)
        answers = AnswerRepository(store, bus)
        generator = FakeGenerator()
        service = QuestionnaireService(
            repo, answers, bus, FakeExtractor(["Q1", "Q2", "Q3"]), generator, settings
        )
        questionnaire = await service.create(text="raw text", name="Pending rows")

        await service.on_created(bus.published[0][1])

        rows = await answers.list_by_questionnaire(questionnaire.id)
        assert sorted(r.question for r in rows) == ["Q1", "Q2", "Q3"]
        assert all(r.answer is None for r in rows)
        assert (await repo.get(questionnaire.id)).state in {
            QuestionnaireState.PROCESSING,
            QuestionnaireState.ANSWERING,
        }
        # Batch events were recorded, not delivered
        assert bus.topics().count(QUESTIONNAIRE_ANSWER_BATCH) == 1
        assert generator.batch_calls == []


class TestConvergence:
    @pytest.mark.asyncio
    async def test_out_of_order_batches_complete_on_the_last_one(self, engine, store):
        questionnaire = Questionnaire(
            name="Out of order", text="...", questions=QUESTIONS, state=QuestionnaireState.ANSWERING
        )
        await engine.questionnaire_repo.save(questionnaire)
        await engine.answer_repo.batch_create(
            {q: None for q in QUESTIONS}, questionnaire_id=questionnaire.id, emit_events=False
        )
        batches = split_batches(QUESTIONS, 10)

        def batch(index):
            return AnswerBatchEvent(
                questionnaire_id=questionnaire.id,
                batch_index=index,
                total_batches=len(batches),
                questions=batches[index],
            ).model_dump()

        await engine.questionnaires.on_answer_batch(batch(2))
        assert (await engine.questionnaires.get(questionnaire.id)).state == QuestionnaireState.ANSWERING
        await engine.questionnaires.on_answer_batch(batch(0))
        assert (await engine.questionnaires.get(questionnaire.id)).state == QuestionnaireState.ANSWERING
        await engine.questionnaires.on_answer_batch(batch(1))

        completed = await engine.questionnaires.get(questionnaire.id)
        assert completed.state == QuestionnaireState.COMPLETED
        assert completed.date_completed is not None

        await engine.questionnaires.on_answer_batch(batch(2))
        assert len(_completed_writes(store, questionnaire.id)) == 1
        assert (await engine.questionnaires.get(questionnaire.id)).date_completed == completed.date_completed

    @pytest.mark.asyncio
    async def test_interleaved_handlers_stamp_completion_once(
        self, settings, bus, extractor, generator
    ):
        store = YieldingKeyValueStore(page_size=7)
        engine = build_engine(
            settings=settings, store=store, bus=bus, extractor=extractor, generator=generator
        )
        engine.start()
        extractor.questions = QUESTIONS

        questionnaire = await _run(engine)

        assert questionnaire.state == QuestionnaireState.COMPLETED
        stamps = _completed_writes(store, questionnaire.id)
        assert len(stamps) == 1
        assert stamps[0] is not None

    @pytest.mark.asyncio
    async def test_stale_copy_cannot_complete_twice(self, engine, store):
        questionnaire = Questionnaire(
            name="Stale", text="...", questions=["Q1?"], state=QuestionnaireState.ANSWERING
        )
        await engine.questionnaire_repo.save(questionnaire)
        await engine.answer_repo.batch_create(
            {"Q1?": "A1"}, questionnaire_id=questionnaire.id, emit_events=False
        )
        stale = await engine.questionnaire_repo.get(questionnaire.id)

        assert await complete_if_converged(
            engine.questionnaire_repo, engine.answer_repo, questionnaire.id
        )
        stale.transition_to(QuestionnaireState.COMPLETED)

        assert not await engine.questionnaire_repo.save_if_state(stale, QuestionnaireState.ANSWERING)
        assert len(_completed_writes(store, questionnaire.id)) == 1


# ──────────────────────────────────────────────────────────────────────
# Fan-out
# ──────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_dispatch_batches_staggers_events(store, settings):
    settings = settings.model_copy(update={"BATCH_STAGGER_MS": 50})
    bus = RecordingEventBus()
    repo = QuestionnaireRepository(store, bus)
    service = QuestionnaireService(
        repo, AnswerRepository(store, bus), bus, FakeExtractor(), FakeGenerator(), settings
    )
    questionnaire = Questionnaire(
        name="Fan out", text="...", questions=QUESTIONS, state=QuestionnaireState.PROCESSING
    )
    await repo.save(questionnaire)

    events = await service.dispatch_batches(questionnaire)

    assert [len(e.questions) for e in events] == [10, 10, 3]
    assert [e.total_batches for e in events] == [3, 3, 3]
    assert events[-1].is_last
    batch_publications = [p for p in bus.published if p[0] == QUESTIONNAIRE_ANSWER_BATCH]
    assert [after_ms for _, _, after_ms in batch_publications] == [0, 50, 100]
    assert [q for e in events for q in e.questions] == QUESTIONS
    assert (await repo.get(questionnaire.id)).state == QuestionnaireState.ANSWERING


# ──────────────────────────────────────────────────────────────────────
# Idempotence
# ──────────────────────────────────────────────────────────────────────


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_redelivered_batch_does_not_duplicate_answers(self, engine, extractor, generator):
        extractor.questions = ["Q1?", "Q2?"]
        generator.skip = {"Q2?"}
        questionnaire = await _run(engine)
        assert questionnaire.state == QuestionnaireState.ANSWERING

        payload = {
            "questionnaire_id": questionnaire.id,
            "batch_index": 0,
            "total_batches": 1,
            "questions": ["Q1?", "Q2?"],
        }
        await engine.questionnaires.on_answer_batch(payload)
        await engine.questionnaires.on_answer_batch(payload)

        answers = await engine.answers.list_for_questionnaire(questionnaire.id)
        assert len(answers) == 2

    @pytest.mark.asyncio
    async def test_redelivered_events_after_completion_are_no_ops(self, engine, extractor, generator):
        extractor.questions = ["Q1?", "Q2?"]
        questionnaire = await _run(engine)
        assert questionnaire.state == QuestionnaireState.COMPLETED
        calls = len(generator.batch_calls)

        await engine.questionnaires.on_created(questionnaire.to_row())
        await engine.questionnaires.on_answer_batch(
            {
                "questionnaire_id": questionnaire.id,
                "batch_index": 0,
                "total_batches": 1,
                "questions": ["Q1?"],
            }
        )
        await engine.bus.drain()

        refreshed = await engine.questionnaires.get(questionnaire.id)
        assert refreshed.state == QuestionnaireState.COMPLETED
        assert refreshed.date_completed == questionnaire.date_completed
        assert len(generator.batch_calls) == calls
        assert len(extractor.calls) == 1

    @pytest.mark.asyncio
    async def test_created_redelivery_resumes_after_extraction(self, engine, extractor):
        questionnaire = Questionnaire(
            name="Resume", text="...", questions=["Q1?", "Q2?"], state=QuestionnaireState.PROCESSING
        )
        await engine.questionnaire_repo.save(questionnaire)

        await engine.questionnaires.on_created(questionnaire.to_row())
        await engine.bus.drain()

        refreshed = await engine.questionnaires.get(questionnaire.id)
        assert refreshed.state == QuestionnaireState.COMPLETED
        assert extractor.calls == []


# ──────────────────────────────────────────────────────────────────────
# Approve / delete / lookups
# ──────────────────────────────────────────────────────────────────────


class TestApprove:
    @pytest.mark.asyncio
    async def test_approves_every_owned_answer(self, engine, extractor):
        extractor.questions = QUESTIONS
        questionnaire = await _run(engine)
        await engine.answer_repo.batch_create({"Seed?": "Seed"}, emit_events=False)

        approved = await engine.questionnaires.approve(questionnaire.id)

        assert approved.approved_at is not None
        assert approved.total_answers_approved == 23
        answers = await engine.answers.list_for_questionnaire(questionnaire.id)
        assert all(a.approval == ApprovalState.APPROVED for a in answers)
        assert (await engine.questionnaires.get(questionnaire.id)).total_answers_approved == 23

    @pytest.mark.asyncio
    async def test_approve_missing_questionnaire(self, engine):
        with pytest.raises(NotFoundError):
            await engine.questionnaires.approve("missing")


class TestDelete:
    @pytest.mark.asyncio
    async def test_refuses_non_terminal_without_force(self, engine, extractor, generator):
        extractor.questions = ["Q1?", "Q2?"]
        generator.skip = {"Q1?"}
        questionnaire = await _run(engine)
        assert questionnaire.state == QuestionnaireState.ANSWERING

        with pytest.raises(InvalidStateTransition):
            await engine.questionnaires.delete(questionnaire.id)
        assert await engine.questionnaires.get(questionnaire.id) is not None

    @pytest.mark.asyncio
    async def test_force_deletes_non_terminal(self, engine, extractor, generator):
        extractor.questions = ["Q1?", "Q2?"]
        generator.skip = {"Q1?"}
        questionnaire = await _run(engine)
        assert questionnaire.state == QuestionnaireState.ANSWERING

        await engine.questionnaires.delete(questionnaire.id, force=True)
        assert await engine.questionnaires.get(questionnaire.id) is None

    @pytest.mark.asyncio
    async def test_cascades_to_answers(self, engine, extractor):
        extractor.questions = ["Q1?", "Q2?"]
        questionnaire = await _run(engine)

        removed = await engine.questionnaires.delete(questionnaire.id, remove_answers=True)

        assert removed == 2
        assert await engine.answers.list_for_questionnaire(questionnaire.id) == []

    @pytest.mark.asyncio
    async def test_keeps_answers_by_default(self, engine, extractor):
        extractor.questions = ["Q1?"]
        questionnaire = await _run(engine)

        removed = await engine.questionnaires.delete(questionnaire.id)

        assert removed == 0
        assert len(await engine.answer_repo.list_by_questionnaire(questionnaire.id)) == 1

    @pytest.mark.asyncio
    async def test_missing(self, engine):
        with pytest.raises(NotFoundError):
            await engine.questionnaires.delete("missing")


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_by_name_is_exact(self, engine):
        created = await engine.questionnaires.create(text="Q?", name="Acme RFI")
        await engine.questionnaires.create(text="Q?", name="Acme RFI 2")

        found = await engine.questionnaires.get_by_name("Acme RFI")
        assert found.id == created.id
        assert await engine.questionnaires.get_by_name("Acme") is None

    @pytest.mark.asyncio
    async def test_search_by_name_pages(self, engine, store):
        for i in range(10):
            await engine.questionnaires.create(text="Q?", name=f"Acme {i}")
        await engine.questionnaires.create(text="Q?", name="Other")

        first, cursor = await engine.questionnaires.search_by_name("Acme")
        assert len(first) == store.page_size
        second, cursor_after = await engine.questionnaires.search_by_name("Acme", cursor=cursor)
        assert cursor_after is None
        names = {q.name for q in first + second}
        assert names == {f"Acme {i}" for i in range(10)}

    @pytest.mark.asyncio
    async def test_list_all_follows_cursors(self, engine):
        for i in range(9):
            await engine.questionnaires.create(text="Q?", name=f"Q {i}")

        questionnaires = await engine.questionnaires.list_all()
        assert len(questionnaires) == 9

    @pytest.mark.asyncio
    async def test_names_do_not_collide_with_answer_labels(self, engine, extractor):
        extractor.questions = ["Q1?"]
        questionnaire = await _run(engine, name="Acme")

        found, _ = await engine.questionnaires.search_by_name("")
        assert [q.id for q in found] == [questionnaire.id]
