"""Completion detection by all-answered convergence.

Batches finish in any order and may be redelivered, so a questionnaire is
complete exactly when every answer it owns has text. This check is the only
place that moves a questionnaire to COMPLETED, and the write is conditional on
the stored state so ``date_completed`` is stamped once.
"""

from app.core.logging import get_logger
from app.core.schemas_questionnaires import QuestionnaireState
from app.db.answers import AnswerRepository
from app.db.questionnaires import QuestionnaireRepository

logger = get_logger(__name__)


async def complete_if_converged(
    questionnaires: QuestionnaireRepository,
    answers: AnswerRepository,
    questionnaire_id: str,
) -> bool:
    """
    Mark the questionnaire COMPLETED if it is ANSWERING and fully answered.

    Returns:
        True if this call completed the questionnaire
    """
    questionnaire = await questionnaires.get(questionnaire_id)
    if questionnaire is None or questionnaire.state != QuestionnaireState.ANSWERING:
        return False

    owned = await answers.list_by_questionnaire(questionnaire_id)
    pending = [a for a in owned if not a.is_answered]
    if not owned or pending:
        logger.debug(
            f"Questionnaire not converged: {len(pending)}/{len(owned)} answers pending",
            extra={"questionnaire_id": questionnaire_id},
        )
        return False

    questionnaire.transition_to(QuestionnaireState.COMPLETED)
    # Concurrent checks may all see every answer filled; only the first write lands
    if not await questionnaires.save_if_state(questionnaire, QuestionnaireState.ANSWERING):
        return False
    logger.info(
        f"All {len(owned)} answers for questionnaire {questionnaire.name} are answered, "
        "setting state to COMPLETED",
        extra={"questionnaire_id": questionnaire_id},
    )
    return True
