"""Extract discrete questions from raw questionnaire text.

The model returns a JSON array of strings in document order. Any failure
(provider error, unparseable output, wrong shape) yields ``None``, which the
pipeline records as "no questions found".
"""

import json

from app.core.config import get_settings
from app.core.llm import complete, get_anthropic_client, parse_llm_json
from app.core.logging import get_logger

logger = get_logger(__name__)

EXTRACT_SYSTEM = """You extract questions from questionnaires such as RFIs, RFPs, security reviews and GDPR forms.

Rules:
- Return every question or information request, in the order it appears
- Include requests that are not phrased with a trailing question mark ("Describe your SLA", "Pricing model")
- Copy each question's wording; do not merge, split or rephrase
- Skip headings, instructions and boilerplate that ask for nothing

Return ONLY a JSON array of strings, no markdown fences."""

EXTRACT_USER = """<questionnaire>
{text}
</questionnaire>

Extract the questions as a JSON array of strings."""


class QuestionExtractor:
    """LLM-backed question extraction."""

    def __init__(self, client=None, model: str | None = None, max_tokens: int | None = None):
        settings = get_settings()
        self._client = client
        self.model = model or settings.EXTRACTION_MODEL
        self.max_tokens = max_tokens or settings.GENERATION_MAX_TOKENS

    @property
    def client(self):
        if self._client is None:
            self._client = get_anthropic_client()
        return self._client

    async def extract_questions(self, text: str, job_id: str | None = None) -> list[str] | None:
        """
        Extract ordered questions from questionnaire text.

        Args:
            text: Raw questionnaire text
            job_id: Optional questionnaire id for usage tracking

        Returns:
            Ordered list of non-empty question strings, or None on any failure
        """
        try:
            result = await complete(
                self.client,
                model=self.model,
                system=EXTRACT_SYSTEM,
                user_message=EXTRACT_USER.format(text=text),
                max_tokens=self.max_tokens,
                temperature=0.0,
                chain="extract_questions",
                job_id=job_id,
            )
        except Exception as e:
            logger.error(f"Question extraction call failed: {e}")
            return None

        try:
            parsed = parse_llm_json(result.text)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse extracted questions JSON: {e}")
            return None

        if not isinstance(parsed, list):
            logger.error(f"Expected a JSON array of questions, got {type(parsed).__name__}")
            return None

        questions = [item.strip() for item in parsed if isinstance(item, str) and item.strip()]
        logger.info(f"Extracted {len(questions)} questions", extra={"questionnaire_id": job_id})
        return questions
