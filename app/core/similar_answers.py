"""Similarity retrieval of previously answered questions.

Questions are embedded in provider-sized batches, each embedding is matched
against the answer index, and neighbor ids (question hashes) are resolved to
stored answers. Neighbors whose source row no longer exists are dropped.
"""

import asyncio
from collections.abc import Awaitable, Callable

from app.core.config import get_settings
from app.core.embeddings import embed_texts_batched
from app.core.logging import get_logger
from app.core.questions import canonical_question
from app.core.schemas_answers import SimilarAnswer, SimilarQuestion
from app.db.answer_index import AnswerVectorIndex, Neighbor
from app.db.answers import AnswerRepository

logger = get_logger(__name__)

Embedder = Callable[[list[str]], Awaitable[list[list[float]]]]


class SimilarityRetriever:
    """Resolve questions to their nearest previously answered questions."""

    def __init__(
        self,
        answers: AnswerRepository,
        index: AnswerVectorIndex,
        embedder: Embedder = embed_texts_batched,
        top_k: int | None = None,
    ):
        self.answers = answers
        self.index = index
        self.embedder = embedder
        self.top_k = top_k or get_settings().SIMILARITY_TOP_K

    async def get_similar_answers(self, questions: list[str]) -> list[SimilarQuestion]:
        """One entry per input question, in input order."""
        normalized = [canonical_question(q) for q in questions]
        if not normalized:
            return []

        embeddings = await self.embedder(normalized)
        neighbor_lists = await asyncio.gather(
            *(self.index.find_neighbors(vector, self.top_k) for vector in embeddings)
        )

        results = []
        for question, neighbors in zip(normalized, neighbor_lists):
            resolved = await self._resolve(neighbors)
            results.append(SimilarQuestion(question=question, neighbors=resolved))

        logger.debug(
            f"Resolved neighbors for {len(results)} questions",
            extra={"extra_data": {"top_k": self.top_k}},
        )
        return results

    async def _resolve(self, neighbors: list[Neighbor]) -> list[SimilarAnswer]:
        resolved = []
        for neighbor in neighbors:
            answer = await self.answers.get_by_hash(neighbor.datapoint_id)
            if answer is None:
                logger.debug(f"Dropping unresolved neighbor {neighbor.datapoint_id}")
                continue
            resolved.append(
                SimilarAnswer(
                    question=answer.question,
                    answer=answer.answer,
                    distance=neighbor.distance,
                )
            )
        return resolved
