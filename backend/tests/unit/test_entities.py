"""
Unit Tests: LLMEntityExtractor

The session is a MagicMock whose ``execute`` answers each statement from a
script keyed by table, so the graph writes can be inspected without
PostgreSQL.

Coverage targets:
  ✅ Unknown entity / relation types and blank names skipped
  ✅ Existing (name, type) entity reused through the re-select
  ✅ Self-links, dangling names and repeated relations skipped
  ✅ Context snippets cut to 500 characters
  ✅ A relation already stored for the document is not counted again
  ✅ Unparseable reply → nothing written
"""

from __future__ import annotations

import json
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import Select

from logbook.capabilities.entities import MAX_SNIPPET_CHARS, LLMEntityExtractor

OTIS_ID = uuid.uuid4()
LIFT_ID = uuid.uuid4()


def _result(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar_one.return_value = value
    return result


class ScriptedSession:
    """Answers entity, mention, relation and select statements in order."""

    def __init__(self, entity_inserts: list, selects: list, relation_inserts: list) -> None:
        self.entity_inserts   = list(entity_inserts)
        self.selects          = list(selects)
        self.relation_inserts = list(relation_inserts)
        self.statements: dict[str, list] = {}
        self.session = MagicMock()
        self.session.execute = AsyncMock(side_effect=self._execute)

    async def _execute(self, statement):
        name = "select" if isinstance(statement, Select) else statement.table.name
        self.statements.setdefault(name, []).append(statement)
        if name == "entities":
            return _result(self.entity_inserts.pop(0))
        if name == "entity_relations":
            return _result(self.relation_inserts.pop(0))
        if name == "select":
            return _result(self.selects.pop(0))
        return _result(None)

    def params(self, name: str) -> list[dict]:
        return [s.compile().params for s in self.statements.get(name, [])]

    def factory(self) -> MagicMock:
        context = MagicMock()
        context.__aenter__.return_value = self.session
        return MagicMock(return_value=context)


def _llm(reply: dict | str) -> MagicMock:
    content = reply if isinstance(reply, str) else json.dumps(reply)
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=SimpleNamespace(content=content))
    return llm


REPLY = {
    "entities": [
        {"name": "Otis Lifts", "entityType": "contractor", "contextSnippet": "s" * 600},
        {"name": "Lift A", "entityType": "asset", "properties": {"floor": "G"}},
        {"name": "Zorg", "entityType": "alien"},
        {"name": "   ", "entityType": "person"},
        "not an object",
    ],
    "relations": [
        {"entityA": "Lift A", "entityB": "Otis Lifts", "relationType": "maintained_by"},
        {"entityA": "Lift A", "entityB": "Otis Lifts", "relationType": "maintained_by"},
        {"entityA": "Lift A", "entityB": "Lift A", "relationType": "related_to"},
        {"entityA": "Lift A", "entityB": "Otis Lifts", "relationType": "teleports"},
        {"entityA": "Zorg", "entityB": "Otis Lifts", "relationType": "related_to"},
    ],
}


@pytest.mark.unit
class TestLLMEntityExtractor:

    async def test_creates_new_and_reuses_existing_entities(self):
        # Otis is new; Lift A already exists, so the insert returns nothing
        script = ScriptedSession(entity_inserts=[OTIS_ID, None], selects=[LIFT_ID], relation_inserts=[1])
        document_id = uuid.uuid4()

        result = await LLMEntityExtractor(script.factory(), _llm(REPLY)).extract_entities("text", document_id)

        assert result.entities_created == 1
        assert result.relations_created == 1
        assert [p["name"] for p in script.params("entities")] == ["Otis Lifts", "Lift A"]
        assert len(script.statements["select"]) == 1

    async def test_mentions_link_each_entity_once(self):
        script = ScriptedSession(entity_inserts=[OTIS_ID, None], selects=[LIFT_ID], relation_inserts=[1])
        document_id = uuid.uuid4()

        await LLMEntityExtractor(script.factory(), _llm(REPLY)).extract_entities("text", document_id)

        mentions = script.params("entity_mentions")
        assert [m["entity_id"] for m in mentions] == [OTIS_ID, LIFT_ID]
        assert all(m["document_id"] == document_id for m in mentions)
        assert mentions[0]["context_snippet"] == "s" * MAX_SNIPPET_CHARS
        assert mentions[1]["context_snippet"] is None

    async def test_only_valid_distinct_relations_written(self):
        script = ScriptedSession(entity_inserts=[OTIS_ID, None], selects=[LIFT_ID], relation_inserts=[1])
        document_id = uuid.uuid4()

        await LLMEntityExtractor(script.factory(), _llm(REPLY)).extract_entities("text", document_id)

        [relation] = script.params("entity_relations")
        assert relation["source_entity_id"] == LIFT_ID
        assert relation["target_entity_id"] == OTIS_ID
        assert relation["relation_type"] == "maintained_by"
        assert relation["source_document_id"] == document_id
        script.session.add.assert_not_called()

    async def test_second_run_adds_no_relations(self):
        script = ScriptedSession(entity_inserts=[None, None], selects=[OTIS_ID, LIFT_ID], relation_inserts=[None])

        result = await LLMEntityExtractor(script.factory(), _llm(REPLY)).extract_entities("text", uuid.uuid4())

        assert result.entities_created == 0
        assert result.relations_created == 0
        assert "ON CONFLICT" in str(script.statements["entity_relations"][0])

    async def test_unparseable_reply_writes_nothing(self):
        script = ScriptedSession(entity_inserts=[], selects=[], relation_inserts=[])
        factory = script.factory()

        result = await LLMEntityExtractor(factory, _llm("no entities here")).extract_entities("t", uuid.uuid4())

        assert result.entities_created == 0
        assert result.relations_created == 0
        factory.assert_not_called()

    async def test_missing_relations_key(self):
        reply = {"entities": [{"name": "AGM 2024", "entityType": "event"}]}
        script = ScriptedSession(entity_inserts=[uuid.uuid4()], selects=[], relation_inserts=[])

        result = await LLMEntityExtractor(script.factory(), _llm(reply)).extract_entities("t", uuid.uuid4())

        assert result.entities_created == 1
        assert "entity_relations" not in script.statements
