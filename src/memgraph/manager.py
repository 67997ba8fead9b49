"""Mutation and query operations over the knowledge graph.

Each mutating method holds the store's writer lock for its whole
load-mutate-save cycle. Queries load without the lock; the atomic rename in
GraphStore.save keeps them from ever seeing a half-written file.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from memgraph.models import parse_timestamp
from memgraph.results import (
    AddObservationsResult,
    CreateRelationsResult,
    EntityError,
    IntegrityReport,
    IntegritySummary,
    ObservationsAdded,
    OrphanedRelation,
    PropsValidation,
    RelationError,
    StaleEntity,
    Staleness,
)
from memgraph.similarity import find_similar_entities

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from memgraph.models import Entity, KnowledgeGraph, Relation
    from memgraph.store import GraphStore

logger = logging.getLogger("memgraph.manager")

PROPS_PREFIX = "@props "
HIGH_USE_ACCESS_COUNT = 10
COMPONENT_STALE_DAYS = 7
_DAY = timedelta(days=1)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def extract_props(observations: Iterable[str]) -> list[str]:
    """Prop names declared by "@props name: type" observations.

    "@props size?: number" declares the optional prop "size".
    """
    props = []
    for o in observations:
        if not o.startswith(PROPS_PREFIX):
            continue
        name = o[len(PROPS_PREFIX):].split(":", 1)[0].strip()
        props.append(name.removesuffix("?"))
    return props


class KnowledgeGraphManager:
    """Graph verbs built on GraphStore's load/save primitives."""

    def __init__(self, store: GraphStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self.store = store
        self._clock = clock

    def now(self) -> str:
        """Current time from the manager's clock, as an ISO-8601 string."""
        return self._clock().isoformat()

    def _days_since(self, timestamp: str) -> int:
        return (self._clock() - parse_timestamp(timestamp)) // _DAY

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def create_entities(self, entities: Iterable[Entity]) -> list[Entity]:
        """Add entities whose names are not taken yet. Returns those added."""
        async with self.store.write_lock():
            graph = await self.store.load()
            taken = graph.entity_names()
            added: list[Entity] = []
            for entity in entities:
                if entity.name in taken:
                    continue
                taken.add(entity.name)
                added.append(entity)
            graph.entities.extend(added)
            await self.store.save(graph)
        logger.debug("created %d entities", len(added))
        return added

    async def delete_entities(self, names: Iterable[str]) -> None:
        """Remove entities and every relation touching them."""
        doomed = set(names)
        async with self.store.write_lock():
            graph = await self.store.load()
            graph.entities = [e for e in graph.entities if e.name not in doomed]
            graph.relations = [
                r for r in graph.relations if r.source not in doomed and r.target not in doomed
            ]
            await self.store.save(graph)
        logger.debug("deleted entities %s", sorted(doomed))

    async def update_entity(
        self,
        name: str,
        observations: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Entity | None:
        """Replace observations and/or merge metadata. None if name is unknown.

        When the observation list changes, the old list is kept in
        previous_observations (one generation only). Lists are compared by
        their "|"-joined text.
        """
        async with self.store.write_lock():
            graph = await self.store.load()
            entity = graph.get(name)
            if entity is None:
                return None
            if metadata:
                entity.metadata.merge(metadata)
            if observations is not None:
                if "|".join(observations) != "|".join(entity.observations):
                    entity.previous_observations = list(entity.observations)
                entity.observations = list(observations)
            now = self.now()
            entity.updated_at = now
            entity.metadata.record_access(now)
            await self.store.save(graph)
        logger.debug("updated entity %s", name)
        return entity

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    async def create_relations(self, relations: Iterable[Relation]) -> CreateRelationsResult:
        """Add relations between existing entities, skipping exact duplicates."""
        result = CreateRelationsResult()
        async with self.store.write_lock():
            graph = await self.store.load()
            names = graph.entity_names()
            existing = set(graph.relations)
            for relation in relations:
                if relation.source not in names:
                    result.errors.append(RelationError(
                        relation, f"Source entity '{relation.source}' does not exist",
                    ))
                    continue
                if relation.target not in names:
                    result.errors.append(RelationError(
                        relation, f"Target entity '{relation.target}' does not exist",
                    ))
                    continue
                if relation in existing:
                    result.skipped.append(relation)
                    continue
                existing.add(relation)
                graph.relations.append(relation)
                result.created.append(relation)
            if result.created:
                await self.store.save(graph)
        logger.debug(
            "relations: %d created, %d skipped, %d errors",
            len(result.created), len(result.skipped), len(result.errors),
        )
        return result

    async def delete_relations(self, relations: Iterable[Relation]) -> None:
        doomed = set(relations)
        async with self.store.write_lock():
            graph = await self.store.load()
            graph.relations = [r for r in graph.relations if r not in doomed]
            await self.store.save(graph)

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    async def add_observations(self, additions: Iterable[tuple[str, list[str]]]) -> AddObservationsResult:
        """Append observations to existing entities.

        additions is a sequence of (entity_name, contents). Strings already on
        the entity are reported as skipped duplicates; unknown entities are
        reported as errors and do not stop the batch.
        """
        result = AddObservationsResult()
        async with self.store.write_lock():
            graph = await self.store.load()
            for entity_name, contents in additions:
                entity = graph.get(entity_name)
                if entity is None:
                    result.errors.append(EntityError(
                        entity_name,
                        f"Entity '{entity_name}' does not exist. "
                        "Please create it first using create_entities.",
                    ))
                    continue
                outcome = ObservationsAdded(entity_name)
                for content in contents:
                    if content in entity.observations:
                        outcome.skipped_duplicates.append(content)
                    else:
                        entity.observations.append(content)
                        outcome.added_observations.append(content)
                if outcome.added_observations:
                    entity.updated_at = self.now()
                result.success.append(outcome)
            if result.changed:
                await self.store.save(graph)
        return result

    async def delete_observations(self, deletions: Iterable[tuple[str, list[str]]]) -> None:
        """Remove exact observation strings. Unknown names and strings are ignored."""
        async with self.store.write_lock():
            graph = await self.store.load()
            for entity_name, observations in deletions:
                entity = graph.get(entity_name)
                if entity is None:
                    continue
                drop = set(observations)
                entity.observations = [o for o in entity.observations if o not in drop]
            await self.store.save(graph)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def read_graph(self) -> KnowledgeGraph:
        return await self.store.load()

    async def search_nodes(self, query: str) -> KnowledgeGraph:
        """Entities matching query (name, type or observation) and the relations among them."""
        graph = await self.store.load()
        matches = [e for e in graph.entities if e.matches(query)]
        for entity in matches:
            await self.increment_access_count(entity.name)
        return graph.subgraph(matches)

    async def open_nodes(self, names: Iterable[str]) -> KnowledgeGraph:
        wanted = set(names)
        graph = await self.store.load()
        matches = [e for e in graph.entities if e.name in wanted]
        for entity in matches:
            await self.increment_access_count(entity.name)
        return graph.subgraph(matches)

    async def get_stale_entities(self, days: float, entity_type: str | None = None) -> list[StaleEntity]:
        """Entities not updated in the last `days` days, most used first."""
        graph = await self.store.load()
        try:
            threshold = self._clock() - timedelta(days=days)
        except OverflowError:
            if days > 0:
                return []
            threshold = datetime.max.replace(tzinfo=UTC)
        stale = []
        for entity in graph.entities:
            if parse_timestamp(entity.updated_at) >= threshold:
                continue
            if entity_type and entity.entity_type != entity_type:
                continue
            count = entity.metadata.access_count
            if count > HIGH_USE_ACCESS_COUNT:
                recommendation = f"High-use entity ({count} accesses), consider refreshing soon"
            else:
                recommendation = f"Low-use entity ({count} accesses), may not need immediate refresh"
            stale.append(StaleEntity(entity, self._days_since(entity.updated_at), recommendation))
        stale.sort(key=lambda s: s.entity.metadata.access_count, reverse=True)
        return stale

    async def get_frequently_used(self, min_access_count: int, entity_type: str | None = None) -> list[Entity]:
        graph = await self.store.load()
        entities = [
            e for e in graph.entities
            if e.metadata.access_count >= min_access_count
            and (not entity_type or e.entity_type == entity_type)
        ]
        entities.sort(key=lambda e: e.metadata.access_count, reverse=True)
        return entities

    async def validate_component_props(
        self,
        component_name: str,
        props_to_check: Iterable[str],
    ) -> PropsValidation | None:
        """Check prop names against a component's "@props" observations.

        Returns None if there is no entity of type "component" with that name.
        Counts as an access of the component.
        """
        async with self.store.write_lock():
            graph = await self.store.load()
            entity = graph.get(component_name)
            if entity is None or entity.entity_type != "component":
                return None
            entity.metadata.record_access(self.now())
            await self.store.save(graph)

        available = extract_props(entity.observations)
        checked = list(props_to_check)
        valid = [p for p in checked if p in available]
        invalid = [p for p in checked if p not in available]
        days = self._days_since(entity.updated_at)
        warning = None
        if days > COMPONENT_STALE_DAYS:
            warning = f"Component info is {days} days old, consider verifying"
        return PropsValidation(
            valid=not invalid,
            invalid_props=invalid,
            valid_props=valid,
            all_available_props=available,
            staleness=Staleness(days=days, warning=warning),
        )

    async def increment_access_count(self, name: str) -> None:
        async with self.store.write_lock():
            graph = await self.store.load()
            entity = graph.get(name)
            if entity is None:
                return
            entity.metadata.record_access(self.now())
            await self.store.save(graph)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    async def verify_graph_integrity(self, max_suggestions: int = 3) -> IntegrityReport:
        """Find relations pointing at missing entities and suggest likely targets."""
        graph = await self.store.load()
        names = graph.entity_names()
        orphans: list[OrphanedRelation] = []
        missing: dict[str, None] = {}

        for relation in graph.relations:
            for position, endpoint in (("from", relation.source), ("to", relation.target)):
                if endpoint in names:
                    continue
                missing[endpoint] = None
                orphans.append(OrphanedRelation(
                    relation=relation,
                    missing_entity=endpoint,
                    entity_position=position,
                    suggestions=find_similar_entities(endpoint, graph.entities, max_suggestions),
                ))

        total = len(graph.relations)
        if orphans:
            logger.info("integrity check: %d orphaned relation endpoint(s)", len(orphans))
        return IntegrityReport(
            is_valid=not orphans,
            orphaned_relations=orphans,
            summary=IntegritySummary(
                total_relations=total,
                valid_relations=total - len(orphans),
                orphaned_relations=len(orphans),
                unique_orphaned_entities=list(missing),
            ),
        )
