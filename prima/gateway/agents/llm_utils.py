"""
LLM utility functions: retry wrapper and JSON answer parsing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

logger = logging.getLogger("gateway.agents.llm_utils")


async def llm_generate(
    client: Any,
    model: str,
    contents: str,
    max_retries: int = 1,
    base_backoff: float = 0.5,
) -> str | None:
    """
    Call Gemini with retry and exponential backoff.

    Returns the response text, or None once every attempt has failed so
    the caller can fall back to its deterministic path.  Overall latency
    is bounded by the caller (``asyncio.wait_for``), not here.
    """
    for attempt in range(max_retries + 1):
        try:
            response = await client.aio.models.generate_content(
                model=model,
                contents=contents,
            )
            text = response.text
            if isinstance(text, str) and text.strip():
                return text
            logger.warning("LLM returned empty response (attempt %d)", attempt + 1)
        except Exception as exc:
            logger.warning(
                "LLM call failed (attempt %d/%d): %s",
                attempt + 1, max_retries + 1, exc,
            )

        if attempt < max_retries:
            await asyncio.sleep(base_backoff * (2 ** attempt))

    logger.error("LLM call exhausted all %d attempts", max_retries + 1)
    return None


def parse_json_response(raw: str) -> dict[str, Any]:
    """Parse a JSON object out of an LLM answer, tolerating ``` fences."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[-1]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    if not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object in LLM response")
        text = text[start:end + 1]
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("LLM response is not a JSON object")
    return parsed
