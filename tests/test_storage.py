"""Tests for GraphStorage: record format, ordering, atomic writes."""

import json
import os
from pathlib import Path

import pytest

from kmemory.core.models import Entity, KnowledgeGraph, Relation
from kmemory.core.storage import (
    DEFAULT_MEMORY_FILENAME,
    PROGRAM_DIR,
    GraphStorage,
    parse_graph,
    resolve_memory_path,
    serialize_graph,
)


@pytest.fixture
def graph() -> KnowledgeGraph:
    return KnowledgeGraph(
        entities=[
            Entity("Alice", "person", ["Likes tea"]),
            Entity("Zoë", "person", []),
        ],
        relations=[Relation("Alice", "Zoë", "knows")],
    )


class TestSerialize:
    def test_entities_before_relations(self):
        graph = KnowledgeGraph(
            entities=[Entity("A", "t")],
            relations=[Relation("A", "A", "r")],
        )
        lines = serialize_graph(graph).splitlines()
        assert json.loads(lines[0])["type"] == "entity"
        assert json.loads(lines[1])["type"] == "relation"

    def test_record_shape(self, graph):
        first = json.loads(serialize_graph(graph).splitlines()[0])
        assert first == {
            "type": "entity",
            "name": "Alice",
            "entityType": "person",
            "observations": ["Likes tea"],
        }

    def test_trailing_newline(self, graph):
        assert serialize_graph(graph).endswith("\n")

    def test_empty_graph_is_empty_file(self):
        assert serialize_graph(KnowledgeGraph()) == ""

    def test_non_ascii_kept_verbatim(self, graph):
        assert "Zoë" in serialize_graph(graph)


class TestParse:
    def test_blank_lines_skipped(self):
        content = '\n{"type":"entity","name":"A","entityType":"t","observations":[]}\n\n'
        graph = parse_graph(content)
        assert [e.name for e in graph.entities] == ["A"]

    def test_unknown_type_ignored(self):
        content = (
            '{"type":"entity","name":"A","entityType":"t","observations":[]}\n'
            '{"type":"note","text":"hello"}\n'
        )
        graph = parse_graph(content)
        assert len(graph.entities) == 1
        assert graph.relations == []

    def test_malformed_line_raises(self):
        with pytest.raises(json.JSONDecodeError):
            parse_graph('{"type":"entity",\n')

    def test_order_preserved(self):
        content = "".join(
            json.dumps({"type": "entity", "name": n, "entityType": "t", "observations": []}) + "\n"
            for n in ["C", "A", "B"]
        )
        assert [e.name for e in parse_graph(content).entities] == ["C", "A", "B"]


class TestGraphStorage:
    def test_missing_file_loads_empty_graph(self, memory_path):
        storage = GraphStorage(memory_path)
        graph = storage.load()
        assert graph.entities == []
        assert graph.relations == []
        assert not memory_path.exists()

    def test_save_then_load_round_trip(self, memory_path, graph):
        storage = GraphStorage(memory_path)
        storage.save(graph)
        assert storage.load() == graph

    def test_unicode_line_separators_round_trip(self, memory_path):
        separators = KnowledgeGraph(
            entities=[Entity("A", "t", ["line\u2028sep", "x\u2029y", "z\u0085w"])],
        )
        storage = GraphStorage(memory_path)
        storage.save(separators)

        assert memory_path.read_text(encoding="utf-8").count("\n") == 1
        assert storage.load() == separators

    def test_save_creates_parent_directories(self, tmp_path, graph):
        path = tmp_path / "nested" / "dir" / "memory.json"
        GraphStorage(path).save(graph)
        assert path.exists()

    def test_save_leaves_no_temp_files(self, memory_path, graph):
        GraphStorage(memory_path).save(graph)
        assert [p.name for p in memory_path.parent.iterdir()] == [memory_path.name]

    def test_save_preserves_file_mode(self, memory_path, graph):
        memory_path.write_text("")
        os.chmod(memory_path, 0o600)
        GraphStorage(memory_path).save(graph)
        assert memory_path.stat().st_mode & 0o777 == 0o600

    def test_failed_save_keeps_previous_file(self, memory_path, graph, monkeypatch):
        storage = GraphStorage(memory_path)
        storage.save(graph)
        before = memory_path.read_text()

        def boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", boom)
        with pytest.raises(OSError, match="disk full"):
            storage.save(KnowledgeGraph())

        assert memory_path.read_text() == before
        assert [p.name for p in memory_path.parent.iterdir()] == [memory_path.name]

    def test_rebuild_callback_on_load_and_save(self, memory_path, graph):
        seen = []
        storage = GraphStorage(memory_path, on_rebuild=seen.append)
        storage.save(graph)
        storage.load()
        assert len(seen) == 2
        assert seen[1] == graph

    def test_malformed_file_propagates(self, memory_path):
        memory_path.write_text("not json\n")
        with pytest.raises(json.JSONDecodeError):
            GraphStorage(memory_path).load()


class TestResolveMemoryPath:
    def test_default_beside_program(self):
        assert resolve_memory_path() == PROGRAM_DIR / DEFAULT_MEMORY_FILENAME

    def test_absolute_used_as_is(self, tmp_path):
        target = tmp_path / "custom.json"
        assert resolve_memory_path(str(target)) == target

    def test_relative_placed_beside_program(self):
        assert resolve_memory_path("team.json") == PROGRAM_DIR / "team.json"

    def test_relative_with_explicit_base(self, tmp_path):
        assert resolve_memory_path("team.json", base_dir=tmp_path) == Path(tmp_path) / "team.json"
