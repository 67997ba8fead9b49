"""Tests for KnowledgeGraphManager operations."""

import asyncio
import json

import pytest

from conftest import START, make_entity
from memgraph.models import Relation


async def _seed(manager, *entities):
    await manager.create_entities(list(entities))


# --- Entities ---


class TestCreateEntities:
    @pytest.mark.asyncio
    async def test_adds_new_entities(self, manager):
        added = await manager.create_entities([make_entity("A"), make_entity("B")])
        assert [e.name for e in added] == ["A", "B"]
        graph = await manager.read_graph()
        assert [e.name for e in graph.entities] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_duplicates_silently_dropped(self, manager):
        await _seed(manager, make_entity("A", observations=["original"]))
        added = await manager.create_entities([make_entity("A", observations=["other"]), make_entity("B")])
        assert [e.name for e in added] == ["B"]
        graph = await manager.read_graph()
        assert graph.get("A").observations == ["original"]

    @pytest.mark.asyncio
    async def test_duplicates_within_batch(self, manager):
        added = await manager.create_entities([make_entity("A"), make_entity("A", "robot")])
        assert len(added) == 1
        assert added[0].entity_type == "person"

    @pytest.mark.asyncio
    async def test_empty_batch_still_writes_file(self, manager, store):
        assert await manager.create_entities([]) == []
        assert store.path.exists()

    @pytest.mark.asyncio
    async def test_concurrent_creates_are_serialised(self, manager):
        await asyncio.gather(*(manager.create_entities([make_entity(f"E{i}")]) for i in range(10)))
        graph = await manager.read_graph()
        assert sorted(e.name for e in graph.entities) == sorted(f"E{i}" for i in range(10))


class TestDeleteEntities:
    @pytest.mark.asyncio
    async def test_cascades_to_relations(self, manager):
        await _seed(manager, make_entity("A"), make_entity("B"), make_entity("C"))
        await manager.create_relations([
            Relation("A", "B", "knows"), Relation("C", "A", "knows"), Relation("B", "C", "knows"),
        ])
        await manager.delete_entities(["A"])
        graph = await manager.read_graph()
        assert [e.name for e in graph.entities] == ["B", "C"]
        assert graph.relations == [Relation("B", "C", "knows")]
        assert all("A" not in (r.source, r.target) for r in graph.relations)

    @pytest.mark.asyncio
    async def test_idempotent(self, manager, store):
        await _seed(manager, make_entity("A"), make_entity("B"))
        await manager.delete_entities(["A"])
        once = (await manager.read_graph()).to_dict()
        await manager.delete_entities(["A"])
        assert (await manager.read_graph()).to_dict() == once

    @pytest.mark.asyncio
    async def test_unknown_names_ignored(self, manager):
        await _seed(manager, make_entity("A"))
        await manager.delete_entities(["Nobody"])
        assert [e.name for e in (await manager.read_graph()).entities] == ["A"]


class TestUpdateEntity:
    @pytest.mark.asyncio
    async def test_missing_entity_returns_none(self, manager):
        assert await manager.update_entity("Ghost", observations=["x"]) is None

    @pytest.mark.asyncio
    async def test_snapshots_previous_observations(self, manager, clock):
        await _seed(manager, make_entity("A", observations=["one", "two"]))
        clock.advance(hours=1)
        updated = await manager.update_entity("A", observations=["three"])
        assert updated.observations == ["three"]
        assert updated.previous_observations == ["one", "two"]
        assert updated.updated_at == clock.now.isoformat()

        stored = (await manager.read_graph()).get("A")
        assert stored.previous_observations == ["one", "two"]

    @pytest.mark.asyncio
    async def test_snapshot_is_single_generation(self, manager):
        await _seed(manager, make_entity("A", observations=["v1"]))
        await manager.update_entity("A", observations=["v2"])
        updated = await manager.update_entity("A", observations=["v3"])
        assert updated.previous_observations == ["v2"]

    @pytest.mark.asyncio
    async def test_unchanged_observations_do_not_snapshot(self, manager):
        await _seed(manager, make_entity("A", observations=["same"]))
        updated = await manager.update_entity("A", observations=["same"])
        assert updated.previous_observations is None

    @pytest.mark.asyncio
    async def test_observations_compared_by_joined_text(self, manager):
        await _seed(manager, make_entity("A", observations=["a", "b"]))
        updated = await manager.update_entity("A", observations=["a|b"])
        assert updated.observations == ["a|b"]
        assert updated.previous_observations is None

    @pytest.mark.asyncio
    async def test_metadata_merge_and_access_bump(self, manager, clock):
        await _seed(manager, make_entity("A"))
        clock.advance(minutes=5)
        updated = await manager.update_entity("A", metadata={"confidence": "medium", "sourceFile": "a.md"})
        assert updated.metadata.confidence == "medium"
        assert updated.metadata.source_file == "a.md"
        assert updated.metadata.access_count == 1
        assert updated.metadata.last_accessed_at == clock.now.isoformat()

    @pytest.mark.asyncio
    async def test_bad_metadata_leaves_file_untouched(self, manager, store):
        await _seed(manager, make_entity("A"))
        before = store.path.read_text(encoding="utf-8")
        with pytest.raises(ValueError):
            await manager.update_entity("A", metadata={"confidence": "absolute"})
        assert store.path.read_text(encoding="utf-8") == before
        assert not store.locked


# --- Relations ---


class TestCreateRelations:
    @pytest.mark.asyncio
    async def test_create_then_skip_duplicate(self, manager):
        await _seed(manager, make_entity("A"), make_entity("B"))
        knows = Relation("A", "B", "knows")

        first = await manager.create_relations([knows])
        assert first.created == [knows]
        assert first.errors == []

        second = await manager.create_relations([knows])
        assert second.created == []
        assert second.skipped == [knows]

    @pytest.mark.asyncio
    async def test_missing_target_is_reported(self, manager):
        await _seed(manager, make_entity("A"))
        result = await manager.create_relations([Relation("A", "Ghost", "knows")])
        assert result.created == []
        assert len(result.errors) == 1
        assert "Ghost" in result.errors[0].error
        assert result.errors[0].error.startswith("Target entity")

    @pytest.mark.asyncio
    async def test_missing_source_is_reported(self, manager):
        await _seed(manager, make_entity("B"))
        result = await manager.create_relations([Relation("Ghost", "B", "knows")])
        assert result.errors[0].error == "Source entity 'Ghost' does not exist"

    @pytest.mark.asyncio
    async def test_partial_batch(self, manager):
        await _seed(manager, make_entity("A"), make_entity("B"))
        result = await manager.create_relations([
            Relation("A", "B", "knows"),
            Relation("A", "Nope", "knows"),
            Relation("B", "A", "admires"),
        ])
        assert len(result.created) == 2
        assert len(result.errors) == 1
        graph = await manager.read_graph()
        names = graph.entity_names()
        assert all(r.source in names and r.target in names for r in result.created)
        assert set(graph.relations) == set(result.created)

    @pytest.mark.asyncio
    async def test_duplicate_within_batch_skipped(self, manager):
        await _seed(manager, make_entity("A"), make_entity("B"))
        result = await manager.create_relations([Relation("A", "B", "knows")] * 2)
        assert len(result.created) == 1
        assert len(result.skipped) == 1

    @pytest.mark.asyncio
    async def test_nothing_created_does_not_save(self, manager, store):
        await _seed(manager, make_entity("A"))
        mtime = store.path.stat().st_mtime_ns
        before = store.path.read_text(encoding="utf-8")
        await manager.create_relations([Relation("A", "Ghost", "knows")])
        assert store.path.read_text(encoding="utf-8") == before
        assert store.path.stat().st_mtime_ns == mtime


class TestDeleteRelations:
    @pytest.mark.asyncio
    async def test_exact_triple_match(self, manager):
        await _seed(manager, make_entity("A"), make_entity("B"))
        await manager.create_relations([Relation("A", "B", "knows"), Relation("A", "B", "likes")])
        await manager.delete_relations([Relation("A", "B", "knows"), Relation("B", "A", "likes")])
        assert (await manager.read_graph()).relations == [Relation("A", "B", "likes")]


# --- Observations ---


class TestObservations:
    @pytest.mark.asyncio
    async def test_add_skips_duplicates(self, manager, clock):
        await _seed(manager, make_entity("A", observations=["tea"]))
        clock.advance(days=1)
        result = await manager.add_observations([("A", ["tea", "coffee", "coffee"])])

        (outcome,) = result.success
        assert outcome.added_observations == ["coffee"]
        assert outcome.skipped_duplicates == ["tea", "coffee"]
        entity = (await manager.read_graph()).get("A")
        assert entity.observations == ["tea", "coffee"]
        assert len(set(entity.observations)) == len(entity.observations)
        assert entity.updated_at == clock.now.isoformat()

    @pytest.mark.asyncio
    async def test_missing_entity_does_not_abort(self, manager):
        await _seed(manager, make_entity("A"))
        result = await manager.add_observations([("Ghost", ["x"]), ("A", ["y"])])
        assert [e.entity_name for e in result.errors] == ["Ghost"]
        assert "create_entities" in result.errors[0].error
        assert (await manager.read_graph()).get("A").observations == ["y"]

    @pytest.mark.asyncio
    async def test_only_duplicates_keeps_updated_at(self, manager, clock):
        await _seed(manager, make_entity("A", observations=["tea"]))
        clock.advance(days=1)
        await manager.add_observations([("A", ["tea"])])
        assert (await manager.read_graph()).get("A").updated_at == START.isoformat()

    @pytest.mark.asyncio
    async def test_delete_observations(self, manager, clock):
        await _seed(manager, make_entity("A", observations=["a", "b", "c"]))
        clock.advance(days=1)
        await manager.delete_observations([("A", ["b", "zzz"]), ("Ghost", ["a"])])
        entity = (await manager.read_graph()).get("A")
        assert entity.observations == ["a", "c"]
        assert entity.updated_at == START.isoformat()


# --- Queries ---


class TestSearchAndOpen:
    @pytest.mark.asyncio
    async def test_search_matches_name_type_and_observations(self, manager):
        await _seed(
            manager,
            make_entity("Alice", "person"),
            make_entity("Widget", "component"),
            make_entity("Bob", "person", ["works on the WIDGET team"]),
        )
        result = await manager.search_nodes("widget")
        assert [e.name for e in result.entities] == ["Widget", "Bob"]

    @pytest.mark.asyncio
    async def test_search_returns_induced_relations(self, manager):
        await _seed(manager, make_entity("A1"), make_entity("A2"), make_entity("B"))
        await manager.create_relations([
            Relation("A1", "A2", "knows"), Relation("A1", "B", "knows"),
        ])
        result = await manager.search_nodes("a")
        assert {e.name for e in result.entities} == {"A1", "A2"}
        assert result.relations == [Relation("A1", "A2", "knows")]

    @pytest.mark.asyncio
    async def test_search_bumps_access_count(self, manager):
        await _seed(manager, make_entity("Alice"), make_entity("Bob"))
        await manager.search_nodes("alice")
        await manager.search_nodes("alice")
        graph = await manager.read_graph()
        assert graph.get("Alice").metadata.access_count == 2
        assert graph.get("Bob").metadata.access_count == 0

    @pytest.mark.asyncio
    async def test_open_nodes(self, manager):
        await _seed(manager, make_entity("A"), make_entity("B"), make_entity("C"))
        await manager.create_relations([Relation("A", "B", "knows"), Relation("B", "C", "knows")])
        result = await manager.open_nodes(["A", "B", "Missing"])
        assert [e.name for e in result.entities] == ["A", "B"]
        assert result.relations == [Relation("A", "B", "knows")]
        graph = await manager.read_graph()
        assert graph.get("A").metadata.access_count == 1
        assert graph.get("C").metadata.access_count == 0

    @pytest.mark.asyncio
    async def test_increment_unknown_is_noop(self, manager, store):
        await _seed(manager, make_entity("A"))
        before = store.path.read_text(encoding="utf-8")
        await manager.increment_access_count("Ghost")
        assert store.path.read_text(encoding="utf-8") == before


class TestStaleAndFrequent:
    @pytest.mark.asyncio
    async def test_stale_entities(self, manager, clock):
        await _seed(
            manager,
            make_entity("Old", "service"),
            make_entity("OldComponent", "component"),
        )
        await manager.update_entity("Old", metadata={"accessCount": 20})
        await manager.update_entity("OldComponent")
        clock.advance(days=10, hours=5)
        await _seed(manager, make_entity("Fresh", when=clock.now))

        stale = await manager.get_stale_entities(7)
        assert [s.entity.name for s in stale] == ["Old", "OldComponent"]
        assert stale[0].days_since_update == 10
        assert stale[0].recommendation.startswith("High-use entity (21 accesses)")
        assert stale[1].recommendation.startswith("Low-use entity (1 accesses)")

        only_components = await manager.get_stale_entities(7, "component")
        assert [s.entity.name for s in only_components] == ["OldComponent"]

    @pytest.mark.asyncio
    async def test_stale_is_read_only(self, manager, clock):
        await _seed(manager, make_entity("A"))
        clock.advance(days=30)
        await manager.get_stale_entities(1)
        assert (await manager.read_graph()).get("A").metadata.access_count == 0

    @pytest.mark.asyncio
    async def test_stale_with_huge_threshold(self, manager, clock):
        await _seed(manager, make_entity("A"))
        clock.advance(days=30)
        assert await manager.get_stale_entities(1e12) == []

    @pytest.mark.asyncio
    async def test_stale_skips_entity_with_bad_timestamp(self, manager, store, clock):
        await _seed(manager, make_entity("A"))
        with store.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps({
                "type": "entity", "name": "B", "entityType": "person", "observations": [],
                "createdAt": START.isoformat(), "updatedAt": "yesterday",
            }) + "\n")
        clock.advance(days=30)

        stale = await manager.get_stale_entities(1)
        assert [s.entity.name for s in stale] == ["A"]

    @pytest.mark.asyncio
    async def test_frequently_used(self, manager):
        await _seed(manager, make_entity("A"), make_entity("B", "component"), make_entity("C"))
        await manager.update_entity("A", metadata={"accessCount": 5})
        await manager.update_entity("B", metadata={"accessCount": 9})

        result = await manager.get_frequently_used(3)
        assert [e.name for e in result] == ["B", "A"]
        assert [e.name for e in await manager.get_frequently_used(3, "person")] == ["A"]
        assert [e.name for e in await manager.get_frequently_used(0)] == ["B", "A", "C"]


class TestValidateComponentProps:
    @pytest.mark.asyncio
    async def test_partitions_props(self, manager):
        await _seed(manager, make_entity("Button", "component", [
            "@props variant: 'primary' | 'secondary'",
            "@props size?: 'sm' | 'lg'",
            "Used on every form",
        ]))
        result = await manager.validate_component_props("Button", ["variant", "onClick", "size"])
        assert result.valid_props == ["variant", "size"]
        assert result.invalid_props == ["onClick"]
        assert result.all_available_props == ["variant", "size"]
        assert result.valid is False

    @pytest.mark.asyncio
    async def test_scenario_variant_and_onclick(self, manager):
        await _seed(manager, make_entity("Button", "component", ["@props variant: 'primary' | 'secondary'"]))
        result = await manager.validate_component_props("Button", ["variant", "onClick"])
        assert result.valid_props == ["variant"]
        assert result.invalid_props == ["onClick"]

    @pytest.mark.asyncio
    async def test_not_a_component(self, manager):
        await _seed(manager, make_entity("Button", "person"))
        assert await manager.validate_component_props("Button", ["x"]) is None
        assert await manager.validate_component_props("Nope", ["x"]) is None

    @pytest.mark.asyncio
    async def test_counts_as_access(self, manager):
        await _seed(manager, make_entity("Card", "component"))
        await manager.validate_component_props("Card", [])
        assert (await manager.read_graph()).get("Card").metadata.access_count == 1

    @pytest.mark.asyncio
    async def test_staleness_warning(self, manager, clock):
        await _seed(manager, make_entity("Card", "component", ["@props title: string"]))
        clock.advance(days=3)
        fresh = await manager.validate_component_props("Card", ["title"])
        assert fresh.valid is True
        assert fresh.staleness.days == 3
        assert fresh.staleness.warning is None

        clock.advance(days=6)
        old = await manager.validate_component_props("Card", ["title"])
        assert old.staleness.days == 9
        assert old.staleness.warning == "Component info is 9 days old, consider verifying"


# --- Integrity ---


class TestVerifyGraphIntegrity:
    @pytest.mark.asyncio
    async def test_clean_graph(self, manager):
        await _seed(manager, make_entity("A"), make_entity("B"))
        await manager.create_relations([Relation("A", "B", "knows")])
        report = await manager.verify_graph_integrity()
        assert report.is_valid
        assert report.summary.total_relations == 1
        assert report.summary.valid_relations == 1
        assert report.orphaned_relations == []

    @pytest.mark.asyncio
    async def test_orphan_with_suggestion(self, manager, store):
        await _seed(manager, make_entity("John_Smith"), make_entity("Acme", "company"))
        # Relations written directly, bypassing create_relations validation
        graph = await store.load()
        graph.relations.append(Relation("Jon_Smth", "Acme", "works_at"))
        await store.save(graph)

        report = await manager.verify_graph_integrity()
        assert not report.is_valid
        (orphan,) = report.orphaned_relations
        assert orphan.missing_entity == "Jon_Smth"
        assert orphan.entity_position == "from"
        assert orphan.suggestions[0].name == "John_Smith"
        assert orphan.suggestions[0].similarity >= 0.7
        assert report.summary.unique_orphaned_entities == ["Jon_Smth"]

    @pytest.mark.asyncio
    async def test_summary_counts(self, manager, store):
        await _seed(manager, make_entity("A"))
        graph = await store.load()
        graph.relations += [
            Relation("A", "X", "r"),
            Relation("X", "Y", "r"),
            Relation("A", "A", "self"),
        ]
        await store.save(graph)

        report = await manager.verify_graph_integrity(max_suggestions=1)
        assert [(o.missing_entity, o.entity_position) for o in report.orphaned_relations] == [
            ("X", "to"), ("X", "from"), ("Y", "to"),
        ]
        assert report.summary.total_relations == 3
        assert report.summary.orphaned_relations == 3
        assert report.summary.valid_relations == 0
        assert report.summary.unique_orphaned_entities == ["X", "Y"]
        assert all(len(o.suggestions) <= 1 for o in report.orphaned_relations)

    @pytest.mark.asyncio
    async def test_read_only(self, manager, store):
        await _seed(manager, make_entity("A"))
        before = store.path.read_text(encoding="utf-8")
        await manager.verify_graph_integrity()
        assert store.path.read_text(encoding="utf-8") == before
