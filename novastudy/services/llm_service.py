"""
LLM inference service for NovaStudy.

Talks to an Ollama-compatible chat endpoint ({llm_base_url}/api/chat).

Usage:
    text = await chat_text(system_prompt, user_prompt)
"""
from __future__ import annotations

import logging

import httpx

from novastudy.config import settings

logger = logging.getLogger(__name__)


class LLMUnavailableError(Exception):
    """Raised when the chat endpoint cannot be reached or returns no content."""


async def chat_text(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int = 1024,
    temperature: float = 0.6,
) -> str:
    """
    Send a chat request and return the assistant message content.

    Raises LLMUnavailableError on transport errors, non-2xx responses or an
    empty completion.
    """
    payload = {
        "model": settings.llm_model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "stream": False,
        "options": {"num_predict": max_tokens, "temperature": temperature},
    }
    try:
        async with httpx.AsyncClient(base_url=settings.llm_base_url) as client:
            res = await client.post(
                "/api/chat", json=payload, timeout=settings.llm_timeout_seconds
            )
            res.raise_for_status()
            content = (res.json().get("message") or {}).get("content") or ""
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("LLM request to %s failed: %s", settings.llm_base_url, e)
        raise LLMUnavailableError(f"LLM request failed: {e}") from e

    content = content.strip()
    if not content:
        raise LLMUnavailableError("LLM returned an empty completion")
    return content
