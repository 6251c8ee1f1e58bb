"""Answer questionnaire questions with retrieval-augmented generation.

Two modes:

- single: one question, plain-text answer, at most one high-confidence prior answer
- batch: many questions in one call, response must be a flat JSON object
  mapping each question to its answer

Both share a context bundle made of static company documents, guidance for
the questionnaire/customer type, and prior answers found by similarity
retrieval.
"""

import asyncio
import json
from pathlib import Path

from app.core.config import get_settings
from app.core.errors import GenerationFailure, MalformedResponseError
from app.core.llm import clean_markdown, complete, get_anthropic_client, parse_llm_json
from app.core.logging import get_logger
from app.core.questions import canonical_question
from app.core.schemas_answers import SimilarAnswer, SimilarQuestion
from app.core.schemas_questionnaires import CustomerType, QuestionnaireType
from app.core.similar_answers import SimilarityRetriever

logger = get_logger(__name__)

CONTEXT_FILES = ("info.txt", "policies.txt", "methodology.txt")

TYPE_GUIDANCE: dict[QuestionnaireType, str] = {
    QuestionnaireType.GENERIC_INBOUND_SALES_REQUEST: (
        "This is an inbound sales request. Favour clear product and pricing information."
    ),
    QuestionnaireType.RFP: (
        "This is a request for proposal. Answer as a vendor bidding for the work; be specific "
        "about capabilities and commitments."
    ),
    QuestionnaireType.SECURITY_QUESTIONNAIRE: (
        "This is a security questionnaire. Be precise about controls and certifications; "
        "never claim a control that is not documented in the context."
    ),
    QuestionnaireType.GDPR_QUESTIONNAIRE: (
        "This is a GDPR / data-protection questionnaire. Be precise about data categories, "
        "processing purposes, sub-processors and data subject rights."
    ),
    QuestionnaireType.OTHER: "",
}

CUSTOMER_GUIDANCE: dict[CustomerType, str] = {
    CustomerType.GMP: "The customer is a global media platform.",
    CustomerType.CSP: "The customer is a content or supply platform.",
    CustomerType.RTDP: "The customer is a real-time data platform.",
    CustomerType.BRAND_SAFETY: "The customer works in brand safety and suitability.",
    CustomerType.AI: "The customer is an AI company.",
    CustomerType.OTHER: "",
}

SINGLE_SYSTEM = """You are an expert at answering RFI and security questions for {company}. Answer to the best of your ability.
Keep answers concise and to the point. Use "Yes" or "No" where that answers the question.
Return only the answer text: no markdown, no headings, no bullet formatting, no restating of the question.
If the context does not contain the information, say so instead of inventing it.
{guidance}
Here is some context:
{context}"""

BATCH_SYSTEM = """You are an expert at answering RFI and security questions for {company}. Answer to the best of your ability.
Keep answers concise and to the point. Note that these questions are all about {company}, and may not always be phrased as a question.
Return ONLY a JSON object with each question, copied exactly as given, as a key and its answer as a string value.
Do not nest objects or arrays; put multi-line answers in a single string separated by newlines.
If the context does not contain the information, say so instead of inventing it.
{guidance}
Here is some context:
{context}"""


def _format_prior_answers(prior: list[SimilarAnswer]) -> str:
    if not prior:
        return ""
    lines = ["Previously approved answers to similar questions:"]
    for item in prior:
        lines.append(f"Q: {item.question}\nA: {item.answer}")
    return "\n\n".join(lines)


def _flatten_answer(question: str, value) -> str:
    """Coerce one response value to answer text, rejecting nested structures."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, bool)):
        return str(value)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return "\n".join(v.strip() for v in value).strip()
    raise MalformedResponseError(
        f"Answer for question {question[:60]!r} is a nested {type(value).__name__}"
    )


class AnswerGenerator:
    """Generate answers for questionnaire questions."""

    def __init__(
        self,
        retriever: SimilarityRetriever | None = None,
        client=None,
        model: str | None = None,
        context_dir: str | Path | None = None,
        similarity_threshold: float | None = None,
    ):
        settings = get_settings()
        self.retriever = retriever
        self._client = client
        self.model = model or settings.GENERATION_MODEL
        self.max_tokens = settings.GENERATION_MAX_TOKENS
        self.company = settings.COMPANY_NAME
        self.context_dir = Path(context_dir or settings.CONTEXT_DOCS_DIR)
        self.similarity_threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else settings.SIMILARITY_THRESHOLD
        )
        self._documents: str | None = None

    @property
    def client(self):
        if self._client is None:
            self._client = get_anthropic_client()
        return self._client

    async def load_documents(self) -> str:
        """Static company documents, read once per generator."""
        if self._documents is None:
            parts = []
            for name in CONTEXT_FILES:
                path = self.context_dir / name
                if not path.exists():
                    logger.warning(f"Context document {path} not found, skipping")
                    continue
                parts.append(await asyncio.to_thread(path.read_text, encoding="utf-8"))
            self._documents = "\n\n".join(p.strip() for p in parts if p.strip())
        return self._documents

    async def find_prior_answers(self, questions: list[str]) -> list[SimilarQuestion]:
        """Similar answered questions, or an empty list when retrieval is unavailable."""
        if self.retriever is None or not questions:
            return []
        try:
            return await self.retriever.get_similar_answers(questions)
        except Exception as e:
            logger.warning(f"Similarity retrieval failed, answering without prior answers: {e}")
            return []

    def _confident(self, similar: SimilarQuestion) -> list[SimilarAnswer]:
        return [
            n
            for n in similar.neighbors
            if n.answer and n.distance >= self.similarity_threshold
        ]

    def _guidance(self, type: QuestionnaireType, customer_type: CustomerType) -> str:
        return "\n".join(
            line for line in (TYPE_GUIDANCE[type], CUSTOMER_GUIDANCE[customer_type]) if line
        )

    async def build_context(self, prior: list[SimilarAnswer]) -> str:
        documents = await self.load_documents()
        return "\n\n".join(part for part in (documents, _format_prior_answers(prior)) if part)

    async def answer_question(
        self,
        question: str,
        type: QuestionnaireType = QuestionnaireType.OTHER,
        customer_type: CustomerType = CustomerType.OTHER,
    ) -> str:
        """
        Answer one question as plain text.

        Raises:
            GenerationFailure: If the model returns no text
        """
        question = canonical_question(question)
        similar = await self.find_prior_answers([question])
        confident = self._confident(similar[0]) if similar else []
        # Single mode uses only the closest prior answer
        prior = sorted(confident, key=lambda n: n.distance, reverse=True)[:1]

        system = SINGLE_SYSTEM.format(
            company=self.company,
            guidance=self._guidance(type, customer_type),
            context=await self.build_context(prior),
        )
        result = await complete(
            self.client,
            model=self.model,
            system=system,
            user_message=question,
            max_tokens=self.max_tokens,
            chain="answer_question",
        )
        answer = clean_markdown(result.text)
        if not answer:
            raise GenerationFailure(f"No answer generated for question {question[:60]!r}")
        return answer

    async def answer_question_batch(
        self,
        questions: list[str],
        type: QuestionnaireType = QuestionnaireType.OTHER,
        customer_type: CustomerType = CustomerType.OTHER,
        job_id: str | None = None,
    ) -> dict[str, str]:
        """
        Answer many questions in one call.

        Returns:
            Mapping of question text, as given, to answer text

        Raises:
            MalformedResponseError: If the response is not a flat JSON object
        """
        batch = [q for q in (canonical_question(q) for q in questions) if q]
        if not batch:
            return {}

        similar = await self.find_prior_answers(batch)
        prior: list[SimilarAnswer] = []
        seen: set[str] = set()
        for item in similar:
            for neighbor in self._confident(item):
                if neighbor.question not in seen:
                    seen.add(neighbor.question)
                    prior.append(neighbor)

        system = BATCH_SYSTEM.format(
            company=self.company,
            guidance=self._guidance(type, customer_type),
            context=await self.build_context(prior),
        )
        result = await complete(
            self.client,
            model=self.model,
            system=system,
            user_message="\n".join(batch),
            max_tokens=self.max_tokens,
            chain="answer_question_batch",
            job_id=job_id,
        )
        return self.parse_batch_response(result.text)

    @staticmethod
    def parse_batch_response(raw_output: str) -> dict[str, str]:
        """
        Parse a batch response into a flat question -> answer mapping.

        Raises:
            MalformedResponseError: On invalid JSON, a non-object payload or nested values
        """
        try:
            parsed = parse_llm_json(raw_output)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Batch response is not valid JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise MalformedResponseError(
                f"Batch response must be a JSON object, got {type(parsed).__name__}"
            )

        answers: dict[str, str] = {}
        for raw_question, value in parsed.items():
            question = canonical_question(str(raw_question))
            if not question:
                continue
            text = _flatten_answer(question, value)
            if text:
                answers[question] = text
        return answers
