"""Nearest-neighbor index over embedded historical questions (pgvector).

Datapoints live in ``answer_embeddings`` keyed by question hash, so a
neighbor's id resolves back to stored answers through the hash label.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

from supabase import Client

from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

TABLE = "answer_embeddings"
MATCH_FUNCTION = "match_answer_embeddings"
UPSERT_CHUNK = 100


@dataclass
class Neighbor:
    datapoint_id: str
    distance: float


class AnswerVectorIndex:
    """Query and maintain the question embedding index."""

    def __init__(self, client_factory: Callable[[], Client] = get_supabase):
        self._client_factory = client_factory

    async def find_neighbors(self, embedding: list[float], neighbor_count: int) -> list[Neighbor]:
        """
        Top-k neighbors for one query vector.

        Returns:
            Neighbors ordered by similarity score, highest first
        """

        def _match():
            return (
                self._client_factory()
                .rpc(
                    MATCH_FUNCTION,
                    {"query_embedding": embedding, "match_count": neighbor_count},
                )
                .execute()
            )

        response = await asyncio.to_thread(_match)
        if not response.data:
            return []

        neighbors = [
            Neighbor(datapoint_id=row["id"], distance=float(row["similarity"]))
            for row in response.data
        ]
        return sorted(neighbors, key=lambda n: n.distance, reverse=True)

    async def upsert_datapoints(self, datapoints: list[dict[str, Any]]) -> int:
        """
        Insert or replace datapoints ``{"id", "question", "embedding"}``.

        Returns:
            Number of datapoints written
        """

        def _upsert(chunk):
            return (
                self._client_factory()
                .table(TABLE)
                .upsert(chunk, on_conflict="id")
                .execute()
            )

        for start in range(0, len(datapoints), UPSERT_CHUNK):
            await asyncio.to_thread(_upsert, datapoints[start : start + UPSERT_CHUNK])

        logger.info(f"Upserted {len(datapoints)} datapoints into {TABLE}")
        return len(datapoints)
