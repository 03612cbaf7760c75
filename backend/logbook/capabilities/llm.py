"""
Shared LLM helpers for the AI-backed capabilities (PII scrub,
categorization, entity extraction).
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from logbook.core.config import settings

logger = logging.getLogger(__name__)

_CODE_FENCE_RE  = re.compile(r"```(?:json)?\s*")
_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def get_chat_model(max_tokens: int | None = None) -> ChatOpenAI:
    """Return the configured chat model."""
    return ChatOpenAI(
        model=settings.llm_model,
        api_key=settings.openai_api_key,
        temperature=settings.llm_temperature,
        max_tokens=max_tokens or settings.llm_max_tokens,
    )


async def complete(llm: BaseChatModel, system: str, user: str) -> str:
    """Send one system + user turn and return the reply as plain text."""
    response = await llm.ainvoke([SystemMessage(content=system), HumanMessage(content=user)])
    content = response.content
    if isinstance(content, str):
        return content
    # Multi-part content: keep the text blocks
    return "".join(
        part if isinstance(part, str) else str(part.get("text", ""))
        for part in content
    )


def extract_json_object(text: str) -> dict[str, Any] | None:
    """
    Parse the first JSON object in an LLM reply.
    Models sometimes wrap JSON in markdown fences or add a preamble.
    """
    cleaned = _CODE_FENCE_RE.sub("", text).strip().rstrip("`").strip()
    match = _JSON_OBJECT_RE.search(cleaned)
    if match is None:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n\n[... text truncated ...]"
