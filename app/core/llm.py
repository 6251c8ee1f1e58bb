"""LLM client utilities shared by the extraction and answering chains."""

import json
import re
import time
from dataclasses import dataclass
from typing import Any

from anthropic import AsyncAnthropic

from app.core.config import get_settings
from app.core.llm_usage import log_llm_usage


def get_anthropic_client() -> AsyncAnthropic:
    """Get an AsyncAnthropic client configured from settings."""
    settings = get_settings()
    return AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)


@dataclass
class CompletionResult:
    text: str
    tokens_input: int = 0
    tokens_output: int = 0
    duration_ms: int = 0


async def complete(
    client: AsyncAnthropic,
    *,
    model: str,
    system: str,
    user_message: str,
    max_tokens: int,
    temperature: float = 0.2,
    chain: str,
    workflow: str = "questionnaire",
    job_id: str | None = None,
) -> CompletionResult:
    """Run one Messages API call and record its usage.

    Returns:
        CompletionResult with the concatenated text blocks of the response
    """
    start = time.time()
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
        system=system,
        messages=[{"role": "user", "content": user_message}],
    )
    duration_ms = int((time.time() - start) * 1000)

    usage = response.usage
    log_llm_usage(
        workflow=workflow,
        model=model,
        provider="anthropic",
        tokens_input=usage.input_tokens,
        tokens_output=usage.output_tokens,
        duration_ms=duration_ms,
        chain=chain,
        job_id=job_id,
    )

    text = "".join(
        block.text for block in response.content if getattr(block, "type", "text") == "text"
    )
    return CompletionResult(
        text=text.strip(),
        tokens_input=usage.input_tokens,
        tokens_output=usage.output_tokens,
        duration_ms=duration_ms,
    )


def _strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    # Extract JSON from markdown code fences
    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    # Fallback: strip leading/trailing fences without regex
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_llm_json(raw_output: str) -> Any:
    """
    Parse LLM output as JSON after stripping code fences.

    Args:
        raw_output: Raw string from LLM response

    Returns:
        Parsed JSON value (object, array, ...)

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
    """
    cleaned = _strip_llm_fences(raw_output)
    return json.loads(cleaned)


def clean_markdown(text: str) -> str:
    """Remove bold/italic markers and headers but keep list structure."""
    text = re.sub(r"\*\*(.+?)\*\*", r"\1", text)
    text = re.sub(r"(?<!\*)\*(?!\s)(.+?)(?<!\s)\*(?!\*)", r"\1", text)
    text = re.sub(r"^#+\s+", "", text, flags=re.MULTILINE)
    return text.strip()
