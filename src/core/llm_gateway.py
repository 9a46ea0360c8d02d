"""LLM Gateway — client for the hosted text-generation collaborator.

GROQ exposes an OpenAI-compatible API, so LangChain's ChatOpenAI is pointed
at it. Requests carry a hard timeout and are never retried here; retry policy
belongs to the caller.
"""

from __future__ import annotations

from typing import Any

from langchain_openai import ChatOpenAI

from src.config import get_settings


# Agent role → model config mapping
MODEL_ROUTING: dict[str, dict[str, Any]] = {
    "report_narrative": {"temperature": 0.2},
    "default":          {},
}


def get_llm(role: str = "default", streaming: bool = False, **overrides: Any) -> ChatOpenAI:
    """Create a ChatOpenAI instance configured for the given role.

    Args:
        role: Role key (e.g., "report_narrative").
        streaming: Whether to enable token-level streaming (default False).
        **overrides: Additional kwargs passed to ChatOpenAI.
    """
    settings = get_settings()
    route = MODEL_ROUTING.get(role, MODEL_ROUTING["default"])

    kwargs: dict[str, Any] = dict(
        model=settings.groq_model,
        base_url=settings.groq_base_url,
        api_key=settings.groq_api_key,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout_seconds,
        max_retries=0,
        streaming=streaming,
    )
    kwargs.update(route)
    kwargs.update(overrides)
    return ChatOpenAI(**kwargs)
