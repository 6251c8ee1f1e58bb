"""Service wiring: one store, one bus, and the services that react to it."""

from dataclasses import dataclass

from app.chains.answer_questions import AnswerGenerator
from app.chains.extract_questions import QuestionExtractor
from app.core.config import Settings, get_settings
from app.core.events import EventBus
from app.core.logging import get_logger
from app.core.similar_answers import SimilarityRetriever
from app.db.answer_index import AnswerVectorIndex
from app.db.answers import AnswerRepository
from app.db.kv_store import KeyValueStore
from app.db.questionnaires import QuestionnaireRepository
from app.services.answers import AnswerService
from app.services.questionnaires import QuestionnaireService

logger = get_logger(__name__)


@dataclass
class Engine:
    settings: Settings
    bus: EventBus
    store: KeyValueStore
    questionnaire_repo: QuestionnaireRepository
    answer_repo: AnswerRepository
    retriever: SimilarityRetriever | None
    questionnaires: QuestionnaireService
    answers: AnswerService
    started: bool = False

    def start(self) -> None:
        """Register every subscription. Safe to call more than once."""
        if self.started:
            return
        self.questionnaires.register()
        self.answers.register()
        self.started = True
        logger.info("Engine started", extra={"extra_data": self.bus.stats})

    async def stop(self) -> None:
        await self.bus.close()
        self.started = False
        logger.info("Engine stopped")


def build_engine(
    settings: Settings | None = None,
    store: KeyValueStore | None = None,
    bus: EventBus | None = None,
    extractor: QuestionExtractor | None = None,
    generator: AnswerGenerator | None = None,
    retriever: SimilarityRetriever | None = None,
) -> Engine:
    """
    Assemble the engine, creating any collaborator that was not injected.

    Tests pass in fakes; production relies on the defaults built from settings.
    """
    settings = settings or get_settings()
    bus = bus or EventBus(
        default_timeout_seconds=settings.HANDLER_TIMEOUT_SECONDS,
        max_attempts=settings.EVENT_MAX_ATTEMPTS,
        retry_delay_seconds=settings.EVENT_RETRY_DELAY_SECONDS,
    )
    store = store or KeyValueStore(
        write_limit=settings.STORE_WRITE_LIMIT,
        page_size=settings.STORE_PAGE_SIZE,
    )
    questionnaire_repo = QuestionnaireRepository(store, bus)
    answer_repo = AnswerRepository(store, bus)

    if retriever is None and generator is None:
        retriever = SimilarityRetriever(
            answer_repo, AnswerVectorIndex(), top_k=settings.SIMILARITY_TOP_K
        )
    generator = generator or AnswerGenerator(retriever=retriever)
    extractor = extractor or QuestionExtractor()

    return Engine(
        settings=settings,
        bus=bus,
        store=store,
        questionnaire_repo=questionnaire_repo,
        answer_repo=answer_repo,
        retriever=retriever,
        questionnaires=QuestionnaireService(
            questionnaire_repo, answer_repo, bus, extractor, generator, settings=settings
        ),
        answers=AnswerService(answer_repo, questionnaire_repo, bus, generator, settings=settings),
    )
