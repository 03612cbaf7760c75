"""
LLM-backed entity and relation extraction into the knowledge graph.

Entities are de-duplicated across the whole archive by (name, entity_type).
Parallel workers may discover the same entity at once, so creation is an
``INSERT ... ON CONFLICT DO NOTHING`` on the UNIQUE(name, entity_type)
constraint followed by a re-select of the winning row. Mentions use the
same pattern on UNIQUE(entity_id, document_id), and relations on
UNIQUE(source, target, type, document) so a repeated run adds nothing.
"""

from __future__ import annotations

import logging
import uuid

from langchain_core.language_models.chat_models import BaseChatModel
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from logbook.capabilities.base import EntityExtractionResult, EntityExtractor
from logbook.capabilities.llm import complete, extract_json_object, truncate
from logbook.models.documents import Entity, EntityMention, EntityRelation

logger = logging.getLogger(__name__)

MAX_TEXT_CHARS     = 10_000
MAX_SNIPPET_CHARS  = 500

ENTITY_TYPES: frozenset[str] = frozenset({
    "asset", "contractor", "person", "contract", "rule", "decision", "promise", "event",
})

RELATION_TYPES: frozenset[str] = frozenset({
    "maintained_by", "located_in", "governed_by", "promised_in", "contradicted_by",
    "party_to", "employed_by", "manages", "related_to",
})

SYSTEM_PROMPT = """You are an entity extraction assistant for a residential building archive. Extract structured entities and relationships from documents.

Respond with ONLY a JSON object (no markdown, no explanation):
{
  "entities": [
    {
      "name": "<entity name>",
      "entityType": "<one of: asset, contractor, person, contract, rule, decision, promise, event>",
      "properties": { "<key>": "<value>" },
      "contextSnippet": "<brief surrounding text where the entity was found>"
    }
  ],
  "relations": [
    {
      "entityA": "<entity name>",
      "entityB": "<entity name>",
      "relationType": "<one of: maintained_by, located_in, governed_by, promised_in, contradicted_by, party_to, employed_by, manages, related_to>"
    }
  ]
}

Entity type guidelines:
- asset: physical items such as lifts, pool, parking, HVAC, fire equipment
- contractor: companies or individuals providing services
- person: named individuals such as trustees, managers, owners, lawyers
- contract: named agreements such as management agreements or service contracts
- rule: specific rules, bylaws or conduct rules
- decision: specific decisions made at meetings or by management
- promise: commitments or undertakings made by any party
- event: specific dated events such as meetings, incidents, inspections

Rules:
- Only extract clearly identifiable, specifically named entities
- For people, include role or position in properties if mentioned
- contextSnippet should be 1-2 sentences showing where the entity appears
- Relations may only link entities extracted in this same response"""


class LLMEntityExtractor(EntityExtractor):

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        llm:             BaseChatModel,
    ) -> None:
        self._session_factory = session_factory
        self._llm             = llm

    async def extract_entities(self, text: str, document_id: uuid.UUID) -> EntityExtractionResult:
        reply = await complete(
            self._llm,
            SYSTEM_PROMPT,
            f"Extract entities and relationships from this document:\n\n{truncate(text, MAX_TEXT_CHARS)}",
        )
        parsed = extract_json_object(reply)
        if parsed is None or not isinstance(parsed.get("entities"), list):
            logger.warning("Unparseable entity extraction reply | doc=%s", document_id)
            return EntityExtractionResult()

        entities_created  = 0
        relations_created = 0
        ids_by_name: dict[str, uuid.UUID] = {}

        async with self._session_factory() as session:
            async with session.begin():
                for item in parsed["entities"]:
                    if not isinstance(item, dict):
                        continue
                    name = str(item.get("name") or "").strip()
                    entity_type = item.get("entityType")
                    if not name or entity_type not in ENTITY_TYPES:
                        continue

                    entity_id, created = await self._upsert_entity(session, name, entity_type, item, document_id)
                    entities_created += int(created)
                    ids_by_name[name] = entity_id

                    snippet = item.get("contextSnippet")
                    await session.execute(
                        pg_insert(EntityMention)
                        .values(
                            entity_id=entity_id,
                            document_id=document_id,
                            context_snippet=str(snippet)[:MAX_SNIPPET_CHARS] if snippet else None,
                        )
                        .on_conflict_do_nothing(index_elements=["entity_id", "document_id"])
                    )

                seen: set[tuple[uuid.UUID, uuid.UUID, str]] = set()
                for rel in parsed.get("relations") or []:
                    if not isinstance(rel, dict):
                        continue
                    a_id = ids_by_name.get(str(rel.get("entityA") or "").strip())
                    b_id = ids_by_name.get(str(rel.get("entityB") or "").strip())
                    relation_type = rel.get("relationType")
                    if a_id is None or b_id is None or a_id == b_id:
                        continue
                    if relation_type not in RELATION_TYPES or (a_id, b_id, relation_type) in seen:
                        continue
                    seen.add((a_id, b_id, relation_type))
                    inserted = await session.execute(
                        pg_insert(EntityRelation)
                        .values(
                            source_entity_id=a_id,
                            target_entity_id=b_id,
                            relation_type=relation_type,
                            source_document_id=document_id,
                        )
                        .on_conflict_do_nothing(constraint="uq_entity_relations")
                        .returning(EntityRelation.id)
                    )
                    if inserted.scalar_one_or_none() is not None:
                        relations_created += 1

        logger.info(
            "Entities extracted | doc=%s entities_created=%d relations_created=%d",
            document_id, entities_created, relations_created,
        )
        return EntityExtractionResult(
            entities_created=entities_created,
            relations_created=relations_created,
        )

    @staticmethod
    async def _upsert_entity(
        session:     AsyncSession,
        name:        str,
        entity_type: str,
        item:        dict,
        document_id: uuid.UUID,
    ) -> tuple[uuid.UUID, bool]:
        """Return (entity_id, created)."""
        properties = item.get("properties")
        result = await session.execute(
            pg_insert(Entity)
            .values(
                name=name,
                entity_type=entity_type,
                properties=properties if isinstance(properties, dict) else {},
                is_confirmed=False,
                discovered_from_document_id=document_id,
            )
            .on_conflict_do_nothing(index_elements=["name", "entity_type"])
            .returning(Entity.id)
        )
        created_id = result.scalar_one_or_none()
        if created_id is not None:
            return created_id, True

        existing = await session.execute(
            select(Entity.id).where(Entity.name == name, Entity.entity_type == entity_type)
        )
        return existing.scalar_one(), False
