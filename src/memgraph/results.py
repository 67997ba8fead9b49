"""Result payloads returned by KnowledgeGraphManager operations.

Per-item failures are data, not exceptions: batch operations report what was
applied, what was skipped and what failed, and the caller renders that.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from memgraph.models import Entity, Relation


@dataclass
class RelationError:
    relation: Relation
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"relation": self.relation.to_dict(), "error": self.error}


@dataclass
class CreateRelationsResult:
    created: list[Relation] = field(default_factory=list)
    skipped: list[Relation] = field(default_factory=list)
    errors: list[RelationError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": [r.to_dict() for r in self.created],
            "skipped": [r.to_dict() for r in self.skipped],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class ObservationsAdded:
    entity_name: str
    added_observations: list[str] = field(default_factory=list)
    skipped_duplicates: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityName": self.entity_name,
            "addedObservations": list(self.added_observations),
            "skippedDuplicates": list(self.skipped_duplicates),
        }


@dataclass
class EntityError:
    entity_name: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"entityName": self.entity_name, "error": self.error}


@dataclass
class AddObservationsResult:
    success: list[ObservationsAdded] = field(default_factory=list)
    errors: list[EntityError] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any(s.added_observations for s in self.success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": [s.to_dict() for s in self.success],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class StaleEntity:
    entity: Entity
    days_since_update: int
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "daysSinceUpdate": self.days_since_update,
            "recommendation": self.recommendation,
        }


@dataclass
class Staleness:
    days: int
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"days": self.days}
        if self.warning:
            d["warning"] = self.warning
        return d


@dataclass
class PropsValidation:
    valid: bool
    invalid_props: list[str]
    valid_props: list[str]
    all_available_props: list[str]
    staleness: Staleness

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "invalidProps": list(self.invalid_props),
            "validProps": list(self.valid_props),
            "allAvailableProps": list(self.all_available_props),
            "staleness": self.staleness.to_dict(),
        }


@dataclass
class Suggestion:
    """A known entity that may be what an orphaned relation meant to reference."""

    name: str
    entity_type: str
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "entityType": self.entity_type, "similarity": self.similarity}


@dataclass
class OrphanedRelation:
    relation: Relation
    missing_entity: str
    entity_position: str               # from | to
    suggestions: list[Suggestion] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "relation": self.relation.to_dict(),
            "missingEntity": self.missing_entity,
            "entityPosition": self.entity_position,
            "suggestions": [s.to_dict() for s in self.suggestions],
        }


@dataclass
class IntegritySummary:
    total_relations: int
    valid_relations: int
    orphaned_relations: int
    unique_orphaned_entities: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRelations": self.total_relations,
            "validRelations": self.valid_relations,
            "orphanedRelations": self.orphaned_relations,
            "uniqueOrphanedEntities": list(self.unique_orphaned_entities),
        }


@dataclass
class IntegrityReport:
    is_valid: bool
    orphaned_relations: list[OrphanedRelation]
    summary: IntegritySummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "orphanedRelations": [o.to_dict() for o in self.orphaned_relations],
            "summary": self.summary.to_dict(),
        }
