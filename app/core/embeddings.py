"""OpenAI embeddings for questions, batched under the provider's per-call cap."""

import asyncio

from openai import OpenAI

from app.core.config import get_settings
from app.core.llm_usage import log_llm_usage
from app.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    return OpenAI(api_key=get_settings().OPENAI_API_KEY)


def _checked_vectors(data, expected_dim: int) -> list[list[float]]:
    vectors = [item.embedding for item in data]
    for i, vector in enumerate(vectors):
        if len(vector) != expected_dim:
            raise ValueError(
                f"Embedding dimension mismatch for text {i}: "
                f"expected {expected_dim}, got {len(vector)}"
            )
    return vectors


def embed_texts(texts: list[str]) -> list[list[float]]:
    """
    Embed texts with a single provider call.

    Args:
        texts: Texts to embed, at most EMBEDDING_BATCH_SIZE of them

    Returns:
        One vector per text, in input order

    Raises:
        ValueError: If a vector does not have EMBEDDING_DIM components
        Exception: If the OpenAI call fails
    """
    if not texts:
        return []

    settings = get_settings()
    try:
        response = _get_client().embeddings.create(model=settings.EMBEDDING_MODEL, input=texts)
        vectors = _checked_vectors(response.data, settings.EMBEDDING_DIM)
    except Exception as e:
        logger.error(f"Failed to embed {len(texts)} texts: {e}")
        raise

    prompt_tokens = getattr(getattr(response, "usage", None), "prompt_tokens", None)
    if isinstance(prompt_tokens, int):
        log_llm_usage(
            workflow="similarity",
            model=settings.EMBEDDING_MODEL,
            provider="openai",
            tokens_input=prompt_tokens,
            tokens_output=0,
            chain="embed_texts",
        )

    logger.info(
        f"Embedded {len(vectors)} texts",
        extra={"extra_data": {"model": settings.EMBEDDING_MODEL, "count": len(vectors)}},
    )
    return vectors


async def embed_texts_batched(
    texts: list[str], batch_size: int | None = None
) -> list[list[float]]:
    """
    Embed any number of texts.

    Chunks of ``batch_size`` (default EMBEDDING_BATCH_SIZE) are embedded
    concurrently in worker threads and flattened back into input order.
    """
    if not texts:
        return []

    size = batch_size or get_settings().EMBEDDING_BATCH_SIZE
    chunks = [texts[start : start + size] for start in range(0, len(texts), size)]
    results = await asyncio.gather(*(asyncio.to_thread(embed_texts, chunk) for chunk in chunks))
    return [vector for chunk_vectors in results for vector in chunk_vectors]
