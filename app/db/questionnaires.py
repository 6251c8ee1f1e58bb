"""Questionnaire persistence over the keyed store."""

from app.core.events import EventBus
from app.core.logging import get_logger
from app.core.schemas_events import QUESTIONNAIRE_CREATED
from app.core.schemas_questionnaires import Questionnaire, QuestionnaireState
from app.db.kv_store import KeyValueStore

logger = get_logger(__name__)

PREFIX = "questionnaire"
NAME_LABEL = "label1"
# Distinct from the answer label namespace ("questionnaire:{id}:{hash}") sharing label1
NAME_PREFIX = "questionnaire-name"


def questionnaire_key(questionnaire_id: str) -> str:
    return f"{PREFIX}:{questionnaire_id}"


def name_label(name: str) -> str:
    return f"{NAME_PREFIX}:{name}"


class QuestionnaireRepository:
    """Stateless repository; all mutable state lives in the store."""

    def __init__(self, store: KeyValueStore, bus: EventBus):
        self.store = store
        self.bus = bus

    async def insert(self, questionnaire: Questionnaire) -> Questionnaire:
        """Persist a new questionnaire and announce it once durably written."""
        await self.save(questionnaire)
        await self.bus.publish(QUESTIONNAIRE_CREATED, questionnaire.to_row())
        return questionnaire

    async def save(self, questionnaire: Questionnaire) -> None:
        await self.store.set(
            questionnaire_key(questionnaire.id),
            questionnaire.to_row(),
            labels={NAME_LABEL: name_label(questionnaire.name)},
        )
        logger.debug(
            f"Saved questionnaire {questionnaire.name} ({questionnaire.state.value})",
            extra={"questionnaire_id": questionnaire.id},
        )

    async def save_if_state(
        self, questionnaire: Questionnaire, expected: QuestionnaireState
    ) -> bool:
        """
        Save only if the stored row is still in ``expected`` state.

        Every state change goes through here so that a handler holding a stale
        copy cannot overwrite a newer state.

        Returns:
            False if another writer moved the row first (or it was deleted)
        """
        saved = await self.store.set_if(
            questionnaire_key(questionnaire.id),
            questionnaire.to_row(),
            field="state",
            expected=expected.value,
            labels={NAME_LABEL: name_label(questionnaire.name)},
        )
        if not saved:
            logger.debug(
                f"Skipped stale write of {questionnaire.name}: no longer {expected.value}",
                extra={"questionnaire_id": questionnaire.id},
            )
        return saved

    async def get(self, questionnaire_id: str) -> Questionnaire | None:
        row = await self.store.get(questionnaire_key(questionnaire_id))
        return Questionnaire.model_validate(row) if row else None

    async def get_by_name(self, name: str) -> Questionnaire | None:
        page = await self.store.get_by_label(NAME_LABEL, name_label(name))
        return Questionnaire.model_validate(page.items[0].value) if page.items else None

    async def search_by_name(
        self, prefix: str, cursor: str | None = None
    ) -> tuple[list[Questionnaire], str | None]:
        """One page of questionnaires whose name starts with ``prefix``."""
        page = await self.store.get_by_label(NAME_LABEL, f"{name_label(prefix)}*", cursor=cursor)
        return [Questionnaire.model_validate(item.value) for item in page.items], page.next_cursor

    async def list_all(self) -> list[Questionnaire]:
        items = await self.store.iter_prefix(f"{PREFIX}:")
        return [Questionnaire.model_validate(item.value) for item in items]

    async def remove(self, questionnaire_id: str) -> None:
        await self.store.remove(questionnaire_key(questionnaire_id))
