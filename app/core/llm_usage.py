"""Token and cost accounting for provider calls, stored in ``llm_usage_log``."""

from typing import Any

from app.core.config import get_settings
from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

USAGE_TABLE = "llm_usage_log"

# USD per 1M tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-sonnet-4-5-20250929": (3.0, 15.0),
    "claude-haiku-4-5-20251001": (0.80, 4.0),
    "text-embedding-3-small": (0.02, 0.0),
    "text-embedding-3-large": (0.13, 0.0),
}


def estimate_cost(model: str, tokens_input: int, tokens_output: int) -> float:
    """Cost in USD, 0.0 for models without a price entry."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        # Dated variants share the price of their family
        family = model.rsplit("-", 1)[0]
        pricing = next(
            (price for name, price in MODEL_PRICING.items() if name.startswith(family)), None
        )
    if pricing is None:
        logger.warning(f"No pricing for model '{model}', recording $0")
        return 0.0

    input_rate, output_rate = pricing
    return round((tokens_input * input_rate + tokens_output * output_rate) / 1_000_000, 6)


def build_usage_row(
    workflow: str,
    model: str,
    provider: str,
    tokens_input: int,
    tokens_output: int,
    duration_ms: int = 0,
    chain: str | None = None,
    job_id: str | None = None,
) -> dict[str, Any]:
    row: dict[str, Any] = {
        "workflow": workflow,
        "chain": chain,
        "model": model,
        "provider": provider,
        "tokens_input": tokens_input,
        "tokens_output": tokens_output,
        "estimated_cost_usd": estimate_cost(model, tokens_input, tokens_output),
        "duration_ms": duration_ms,
        "job_id": job_id,
    }
    return {key: value for key, value in row.items() if value is not None}


def log_llm_usage(
    workflow: str,
    model: str,
    provider: str,
    tokens_input: int,
    tokens_output: int,
    duration_ms: int = 0,
    chain: str | None = None,
    job_id: str | None = None,
) -> None:
    """
    Record one provider call.

    ``workflow`` is the pipeline stage (extraction, answering, similarity)
    and ``job_id`` the questionnaire the call was made for, if any. Failures
    are logged and never raised to the caller.
    """
    if not get_settings().LLM_USAGE_LOGGING:
        return

    row = build_usage_row(
        workflow, model, provider, tokens_input, tokens_output, duration_ms, chain, job_id
    )
    try:
        get_supabase().table(USAGE_TABLE).insert(row).execute()
    except Exception as e:
        logger.error(f"Failed to record LLM usage for {workflow}/{chain or '-'}: {e}")
        return

    logger.debug(
        f"Usage {workflow}/{chain or '-'} model={model} "
        f"tokens={tokens_input}+{tokens_output} cost=${row['estimated_cost_usd']:.4f}"
    )
