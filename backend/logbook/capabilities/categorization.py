"""
LLM-backed document categorization.

Sends the (truncated) document text together with the category tree to the
chat model and expects a JSON reply:

    {
      "categories":        [{"categoryId": "<uuid>", "confidence": 0.0-1.0}],
      "summary":           "<2-3 sentences>",
      "overallConfidence": 0.0-1.0,
      "extractedDate":     "YYYY-MM-DD" | null
    }

Only category ids that exist are linked. Links are upserted into
document_categories so reprocessing never duplicates them. An unparseable
reply, or an archive with no categories, yields confidence 0 and therefore
sends the document to review.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date

from langchain_core.language_models.chat_models import BaseChatModel
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from logbook.capabilities.base import CategorizationResult, Categorizer, CategoryLink
from logbook.capabilities.llm import complete, extract_json_object, truncate
from logbook.models.documents import Category, DocumentCategory

logger = logging.getLogger(__name__)

MAX_TEXT_CHARS     = 12_000
DEFAULT_CONFIDENCE = 0.5

SYSTEM_PROMPT_TEMPLATE = """You are a document classification assistant for a residential building archive. Analyze documents and return structured JSON.

Respond with ONLY a JSON object (no markdown, no explanation) matching this schema:
{{
  "categories": [
    {{ "categoryId": "<uuid>", "confidence": <0.0-1.0> }}
  ],
  "summary": "<2-3 sentence summary of the document>",
  "overallConfidence": <0.0-1.0>,
  "extractedDate": "<YYYY-MM-DD or null>"
}}

Rules:
- Select 1-3 of the most relevant categories from the tree below
- Prefer the CHILD category when one applies
- overallConfidence reflects how sure you are about all your categorizations combined
- extractedDate is the date the document was created or sent (not today's date), null if not identifiable
- The summary should be factual and useful to a trustee reviewing documents

Category tree:
{tree}"""


def build_category_tree(categories: list[Category]) -> str:
    """Render parents and their children as an indented list with ids."""
    lines: list[str] = []
    parents = [c for c in categories if c.parent_id is None]
    for parent in parents:
        lines.append(f'  - "{parent.name}" (id: {parent.id})')
        for child in categories:
            if child.parent_id == parent.id:
                lines.append(f'    - "{child.name}" (id: {child.id})')
    return "\n".join(lines)


def _parse_date(value: object) -> date | None:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _clamp(value: object, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return max(0.0, min(1.0, float(value)))


class LLMCategorizer(Categorizer):

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        llm:             BaseChatModel,
    ) -> None:
        self._session_factory = session_factory
        self._llm             = llm

    async def categorize(self, text: str, document_id: uuid.UUID) -> CategorizationResult:
        async with self._session_factory() as session:
            result = await session.execute(select(Category).order_by(Category.name))
            categories = list(result.scalars().all())

        if not categories:
            logger.warning("No categories defined | doc=%s", document_id)
            return CategorizationResult(summary=None, confidence=0.0)

        reply = await complete(
            self._llm,
            SYSTEM_PROMPT_TEMPLATE.format(tree=build_category_tree(categories)),
            f"Categorize this document:\n\n{truncate(text, MAX_TEXT_CHARS)}",
        )
        parsed = extract_json_object(reply)
        if parsed is None:
            logger.warning("Unparseable categorization reply | doc=%s", document_id)
            return CategorizationResult(summary=None, confidence=0.0)

        known = {str(c.id): c.id for c in categories}
        links: list[CategoryLink] = []
        for position, item in enumerate(parsed.get("categories") or []):
            if not isinstance(item, dict):
                continue
            category_id = known.get(str(item.get("categoryId")))
            if category_id is None:
                continue
            links.append(CategoryLink(
                category_id=category_id,
                confidence=_clamp(item.get("confidence"), DEFAULT_CONFIDENCE),
                is_primary=position == 0,
            ))

        if links:
            await self._save_links(document_id, links)

        summary = parsed.get("summary")
        return CategorizationResult(
            summary=summary if isinstance(summary, str) and summary else None,
            confidence=_clamp(parsed.get("overallConfidence"), DEFAULT_CONFIDENCE),
            extracted_date=_parse_date(parsed.get("extractedDate")),
            category_links=links,
        )

    async def _save_links(self, document_id: uuid.UUID, links: list[CategoryLink]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                for link in links:
                    stmt = pg_insert(DocumentCategory).values(
                        document_id=document_id,
                        category_id=link.category_id,
                        confidence=link.confidence,
                        is_primary=link.is_primary,
                    )
                    await session.execute(
                        stmt.on_conflict_do_update(
                            index_elements=["document_id", "category_id"],
                            set_={
                                "confidence": stmt.excluded.confidence,
                                "is_primary": stmt.excluded.is_primary,
                            },
                        )
                    )
        logger.info("Categories linked | doc=%s count=%d", document_id, len(links))
