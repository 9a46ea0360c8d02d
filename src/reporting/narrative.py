"""Report narrative — prose written by the text-generation collaborator.

The compiler hands over a JSON summary (case metadata, metrics, alerts) and
gets back one block of text. Any failure, including a timeout or an empty
answer, surfaces as ``NarrativeUnavailableError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage

from src.core.errors import NarrativeUnavailableError
from src.core.llm_gateway import get_llm

logger = logging.getLogger(__name__)

NARRATIVE_SYSTEM_PROMPT = """You are a senior financial-crime analyst supporting a Brazilian police investigation unit.

You receive a JSON summary of a RIF (Relatório de Inteligência Financeira) analysis: case metadata,
aggregate metrics and the red-flag alerts computed by a deterministic rule engine.

RULES:
1. Use ONLY facts present in the summary. Never invent amounts, names or dates.
2. Write in Brazilian Portuguese, in an objective, technical register.
3. Relate each alert to the money-laundering typology it indicates (Lei 9.613/1998, COAF guidance).
4. Do not restate every number; the report already carries the tables.

FORMAT (markdown headings):
## Resumo executivo
## Análise dos alertas
## Recomendações investigativas
## Classificação de risco geral
"""


def _content_text(raw_content: Any) -> str:
    """Flatten a LangChain message content into plain text."""
    if isinstance(raw_content, str):
        return raw_content
    if isinstance(raw_content, list):
        parts: list[str] = []
        for item in raw_content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str):
                    parts.append(text)
        return "\n".join(parts)
    return str(raw_content)


def generate_narrative(summary: dict[str, Any]) -> str:
    """Ask the collaborator for the report narrative.

    Raises:
        NarrativeUnavailableError: on any client, network or timeout error,
            or when the answer is empty.
    """
    case_id = summary.get("case", {}).get("case_id", "unknown")
    logger.info("Narrative generation: requesting prose for case %s", case_id)

    try:
        llm = get_llm(role="report_narrative")
        response = llm.invoke([
            SystemMessage(content=NARRATIVE_SYSTEM_PROMPT),
            HumanMessage(content=json.dumps(summary, ensure_ascii=False, indent=2, default=str)),
        ])
    except Exception as e:
        logger.error("Narrative generation failed: %s", e)
        raise NarrativeUnavailableError(f"text generation failed: {e}") from e

    content = _content_text(response.content).strip()
    if not content:
        raise NarrativeUnavailableError("text generation returned an empty answer")

    logger.info("Narrative generation complete (%d chars)", len(content))
    return content
