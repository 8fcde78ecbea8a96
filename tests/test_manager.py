"""Tests for KnowledgeGraphManager: the load/mutate/save operation surface."""

import json
import threading

import pytest

from kmemory.core.config import MemoryConfig
from kmemory.core.errors import DanglingRelationError, EntityNotFoundError
from kmemory.core.manager import KnowledgeGraphManager
from kmemory.core.models import Entity, ObservationAddition, Relation
from kmemory.matching.duplicates import DuplicateOptions


def names(graph):
    return [e.name for e in graph.entities]


# ============================================================================
# Entities
# ============================================================================


class TestCreateEntities:
    def test_returns_inserted(self, manager):
        created = manager.create_entities([{"name": "Alice", "entityType": "person", "observations": []}])
        assert [e.name for e in created] == ["Alice"]

    def test_idempotent(self, manager):
        record = {"name": "Alice", "entityType": "person", "observations": ["likes tea"]}
        manager.create_entities([record])
        assert manager.create_entities([record]) == []
        assert names(manager.read_graph()) == ["Alice"]

    def test_existing_name_not_overwritten(self, manager):
        manager.create_entities([Entity("Alice", "person", ["a"])])
        manager.create_entities([Entity("Alice", "robot", ["b"])])
        [alice] = manager.read_graph().entities
        assert alice.entity_type == "person"
        assert alice.observations == ["a"]

    def test_duplicate_names_within_request(self, manager):
        created = manager.create_entities([Entity("A", "t"), Entity("A", "u")])
        assert len(created) == 1
        assert created[0].entity_type == "t"

    def test_persisted(self, manager, memory_path, read_records):
        manager.create_entities([Entity("Alice", "person")])
        assert read_records(memory_path) == [
            {"type": "entity", "name": "Alice", "entityType": "person", "observations": []}
        ]

    def test_unicode_line_separator_in_observation(self, manager):
        manager.create_entities([Entity("Alice", "person", ["first\u2028second"])])
        [alice] = manager.read_graph().entities
        assert alice.observations == ["first\u2028second"]

    def test_accepts_model_instances(self, manager):
        created = manager.create_entities([Entity("Alice", "person")])
        assert created[0] == Entity("Alice", "person")


class TestDeleteEntities:
    def test_cascades_relations(self, manager):
        manager.create_entities([Entity("Alice", "person"), Entity("Bob", "person")])
        manager.create_relations([Relation("Alice", "Bob", "knows")])
        manager.delete_entities(["Bob"])
        graph = manager.read_graph()
        assert names(graph) == ["Alice"]
        assert graph.relations == []

    def test_no_relation_mentions_deleted_name(self, seeded_manager):
        seeded_manager.delete_entities(["Acme"])
        for relation in seeded_manager.read_graph().relations:
            assert "Acme" not in (relation.from_name, relation.to_name)

    def test_unknown_name_is_noop(self, seeded_manager):
        before = seeded_manager.read_graph()
        seeded_manager.delete_entities(["Ghost"])
        assert seeded_manager.read_graph() == before

    def test_cascade_removes_dangling_relations_too(self, manager):
        manager.create_relations([Relation("Ghost", "Other", "haunts")])
        manager.delete_entities(["Ghost"])
        assert manager.read_graph().relations == []

    def test_bare_string_is_one_name(self, manager):
        manager.create_entities([Entity(n, "t") for n in ["B", "o", "b", "Bob"]])
        manager.delete_entities("Bob")
        assert names(manager.read_graph()) == ["B", "o", "b"]


# ============================================================================
# Relations
# ============================================================================


class TestRelations:
    def test_create_idempotent(self, seeded_manager):
        relation = {"from": "Alice", "to": "Acme", "relationType": "works_at"}
        assert seeded_manager.create_relations([relation]) == []
        assert len(seeded_manager.read_graph().relations) == 2

    def test_different_type_is_new(self, seeded_manager):
        created = seeded_manager.create_relations([{"from": "Alice", "to": "Acme", "relationType": "founded"}])
        assert created == [Relation("Alice", "Acme", "founded")]

    def test_dangling_allowed_by_default(self, manager):
        created = manager.create_relations([Relation("Ghost", "Other", "haunts")])
        assert len(created) == 1

    def test_delete_exact_triple(self, seeded_manager):
        seeded_manager.delete_relations([{"from": "Alice", "to": "Bob", "relationType": "knows"}])
        assert seeded_manager.read_graph().relations == [Relation("Alice", "Acme", "works_at")]

    def test_delete_unknown_is_noop(self, seeded_manager):
        seeded_manager.delete_relations([Relation("Bob", "Alice", "knows")])
        assert len(seeded_manager.read_graph().relations) == 2

    def test_relations_written_after_entities(self, memory_path, read_records):
        manager = KnowledgeGraphManager(config=MemoryConfig(memory_file_path=memory_path))
        manager.create_relations([Relation("A", "B", "r")])
        manager.create_entities([Entity("A", "t")])
        assert [r["type"] for r in read_records(memory_path)] == ["entity", "relation"]


class TestValidationMode:
    @pytest.fixture
    def strict_manager(self, memory_path):
        config = MemoryConfig(memory_file_path=memory_path, validate_relations=True)
        manager = KnowledgeGraphManager(config=config)
        manager.create_entities([Entity("Alice", "person")])
        return manager

    def test_rejects_dangling_relation(self, strict_manager, memory_path):
        before = memory_path.read_text()
        with pytest.raises(DanglingRelationError, match="Ghost"):
            strict_manager.create_relations([Relation("Alice", "Ghost", "knows")])
        assert memory_path.read_text() == before

    def test_error_lists_missing_names(self, strict_manager):
        with pytest.raises(DanglingRelationError) as exc_info:
            strict_manager.create_relations([Relation("X", "X", "self")])
        assert exc_info.value.missing == ["X"]

    def test_batch_sees_entities_created_in_same_batch(self, strict_manager):
        result = strict_manager.batch_create(
            entities=[Entity("Bob", "person")],
            relations=[Relation("Alice", "Bob", "knows")],
        )
        assert len(result.created_relations) == 1


# ============================================================================
# Observations
# ============================================================================


class TestObservations:
    def test_add_returns_only_new(self, seeded_manager):
        results = seeded_manager.add_observations([
            {"entityName": "Alice", "contents": ["Speaks French", "Owns a cat"]},
        ])
        assert [r.to_dict() for r in results] == [
            {"entityName": "Alice", "addedObservations": ["Owns a cat"]}
        ]

    def test_add_dedups_within_request(self, seeded_manager):
        [result] = seeded_manager.add_observations([ObservationAddition("Bob", ["x", "x"])])
        assert result.added_observations == ["x"]

    def test_add_to_missing_entity_fails_without_write(self, seeded_manager, memory_path):
        before = memory_path.read_text()
        with pytest.raises(EntityNotFoundError, match="Entity with name Ghost not found"):
            seeded_manager.add_observations([
                {"entityName": "Alice", "contents": ["new fact"]},
                {"entityName": "Ghost", "contents": ["boo"]},
            ])
        assert memory_path.read_text() == before

    def test_entity_not_found_is_key_error(self, manager):
        with pytest.raises(KeyError):
            manager.add_observations([ObservationAddition("Ghost", ["x"])])

    def test_delete_by_value(self, seeded_manager):
        seeded_manager.delete_observations([{"entityName": "Alice", "observations": ["Speaks French"]}])
        alice = seeded_manager.open_nodes(["Alice"]).entities[0]
        assert alice.observations == ["Works at Acme"]

    def test_delete_on_missing_entity_is_noop(self, seeded_manager):
        before = seeded_manager.read_graph()
        seeded_manager.delete_observations([{"entityName": "Ghost", "observations": ["x"]}])
        assert seeded_manager.read_graph() == before


# ============================================================================
# Batch
# ============================================================================


class TestBatchCreate:
    def test_all_three_kinds(self, manager):
        result = manager.batch_create(
            entities=[{"name": "Alice", "entityType": "person", "observations": []}],
            relations=[{"from": "Alice", "to": "Alice", "relationType": "admires"}],
            observations=[{"entityName": "Alice", "contents": ["likes tea"]}],
        )
        data = result.to_dict()
        assert [e["name"] for e in data["createdEntities"]] == ["Alice"]
        assert len(data["createdRelations"]) == 1
        assert data["addedObservations"] == [{"entityName": "Alice", "addedObservations": ["likes tea"]}]

    def test_single_save(self, manager, monkeypatch):
        calls = []
        original = manager.storage.save
        monkeypatch.setattr(manager.storage, "save", lambda g: (calls.append(1), original(g)))
        manager.batch_create(
            entities=[Entity("A", "t")],
            relations=[Relation("A", "A", "r")],
            observations=[ObservationAddition("A", ["x"])],
        )
        assert len(calls) == 1

    def test_failure_writes_nothing(self, seeded_manager, memory_path):
        before = memory_path.read_text()
        with pytest.raises(EntityNotFoundError):
            seeded_manager.batch_create(
                entities=[Entity("Carol", "person")],
                observations=[ObservationAddition("Ghost", ["x"])],
            )
        assert memory_path.read_text() == before

    def test_all_optional(self, manager):
        result = manager.batch_create()
        assert result.to_dict() == {"createdEntities": [], "createdRelations": [], "addedObservations": []}


# ============================================================================
# Queries
# ============================================================================


class TestQueries:
    def test_read_graph_on_missing_file(self, manager, memory_path):
        graph = manager.read_graph()
        assert graph.entities == []
        assert not memory_path.exists()

    def test_search_scenario(self, manager):
        manager.create_entities([{"name": "Alice", "entityType": "person", "observations": ["likes tea"]}])
        result = manager.search_nodes("tea")
        assert result.to_dict() == {
            "entities": [{"name": "Alice", "entityType": "person", "observations": ["likes tea"]}],
            "relations": [],
        }

    def test_search_substring_of_observation(self, seeded_manager):
        assert names(seeded_manager.search_nodes("nvil")) == ["Acme"]
        assert names(seeded_manager.search_nodes("ks Fre")) == ["Alice"]

    def test_empty_search(self, seeded_manager):
        assert seeded_manager.search_nodes("").entities == []
        assert seeded_manager.search_nodes("   ").relations == []

    def test_search_sees_external_edits(self, seeded_manager, memory_path):
        with open(memory_path, "a") as f:
            f.write(json.dumps({"type": "entity", "name": "Zed", "entityType": "person", "observations": []}) + "\n")
        assert names(seeded_manager.search_nodes("zed")) == ["Zed"]

    def test_search_after_write(self, seeded_manager):
        seeded_manager.add_observations([{"entityName": "Bob", "contents": ["Collects stamps"]}])
        assert names(seeded_manager.search_nodes("stamps")) == ["Bob"]

    def test_open_nodes(self, seeded_manager):
        result = seeded_manager.open_nodes(["Alice", "Bob"])
        assert names(result) == ["Alice", "Bob"]
        assert result.relations == [Relation("Alice", "Bob", "knows")]

    def test_queries_do_not_write(self, seeded_manager, memory_path):
        before = memory_path.stat().st_mtime_ns
        seeded_manager.read_graph()
        seeded_manager.search_nodes("alice")
        seeded_manager.open_nodes(["Alice"])
        seeded_manager.find_duplicates(entities=[Entity("Alice", "person")])
        assert memory_path.stat().st_mtime_ns == before


class TestFindDuplicates:
    def test_loose_scenario(self, seeded_manager):
        report = seeded_manager.find_duplicates(
            entities=[{"name": "Alise", "entityType": "person", "observations": []}],
            options={"preset": "loose"},
        )
        matches = [m for m in report.duplicate_entities if m.existing_entity.name == "Alice"]
        assert len(matches) == 1
        assert matches[0].similarity_score >= 0.6
        assert matches[0].match_type in ("fuzzy", "semantic")

    def test_exact_at_every_threshold(self, seeded_manager):
        for threshold in (0.0, 0.5, 0.99, 1.0):
            report = seeded_manager.find_duplicates(
                entities=[Entity("Alice", "person")],
                options={"entityNameSimilarityThreshold": threshold},
            )
            exact = [m for m in report.duplicate_entities if m.existing_entity.name == "Alice"]
            assert exact[0].similarity_score == 1.0
            assert exact[0].match_type == "exact"

    def test_config_defaults_apply(self, memory_path):
        config = MemoryConfig(memory_file_path=memory_path, duplicates={"preset": "strict"})
        manager = KnowledgeGraphManager(config=config)
        manager.create_entities([Entity("Alice", "person")])
        assert manager.find_duplicates(entities=[Entity("Alicx", "person")]).duplicate_entities == []
        report = manager.find_duplicates(entities=[Entity("Alicx", "person")], options={"preset": "standard"})
        assert len(report.duplicate_entities) == 1

    def test_options_instance(self, seeded_manager):
        report = seeded_manager.find_duplicates(
            entities=[Entity("Alicx", "person")],
            options=DuplicateOptions(preset="strict"),
        )
        assert report.duplicate_entities == []

    def test_check_existing_graph(self, seeded_manager):
        seeded_manager.create_entities([Entity("Alicx", "person")])
        report = seeded_manager.find_duplicates(check_existing_graph=True)
        assert len(report.existing_entities) == 1


# ============================================================================
# Journal and concurrency
# ============================================================================


class TestJournal:
    def test_operations_logged(self, logged_manager):
        logged_manager.create_entities([Entity("Alice", "person")])
        logged_manager.search_nodes("alice")
        summary = logged_manager.logger.get_session_summary()
        assert summary["phase_counts"]["create"] == 1
        assert summary["phase_counts"]["search"] == 1
        assert summary["phase_counts"]["save"] == 1
        assert summary["phase_counts"]["load"] == 2

    def test_failure_logged_and_reraised(self, logged_manager):
        with pytest.raises(EntityNotFoundError):
            logged_manager.add_observations([ObservationAddition("Ghost", ["x"])])
        [error] = logged_manager.logger.get_errors()
        assert error.data["error_type"] == "EntityNotFoundError"
        assert error.data["operation"] == "add_observations"

    def test_no_logger_by_default(self, manager):
        assert manager.logger is None


class TestConcurrency:
    def test_parallel_creates_lose_nothing(self, manager):
        def worker(i):
            manager.create_entities([Entity(f"E{i}", "t")])
            manager.add_observations([ObservationAddition(f"E{i}", [f"obs {i}"])])

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        graph = manager.read_graph()
        assert len(graph.entities) == 20
        assert all(len(e.observations) == 1 for e in graph.entities)


class TestRoundTrip:
    def test_save_load_save(self, seeded_manager, memory_path):
        first = memory_path.read_text()
        graph = seeded_manager.read_graph()
        seeded_manager.storage.save(graph)
        assert memory_path.read_text() == first
        assert seeded_manager.read_graph() == graph


class TestFromConfig:
    def test_cli_overrides(self, tmp_path):
        path = tmp_path / "override.json"
        manager = KnowledgeGraphManager.from_config(cli_overrides={"memory_file_path": str(path)})
        manager.create_entities([Entity("A", "t")])
        assert manager.memory_path == path
        assert path.exists()

    def test_log_db_from_config(self, tmp_path, memory_path):
        config = MemoryConfig(memory_file_path=memory_path, log_db_path=tmp_path / "j.db")
        manager = KnowledgeGraphManager(config=config)
        manager.read_graph()
        assert manager.logger.get_session_summary()["phase_counts"] == {"load": 1}
