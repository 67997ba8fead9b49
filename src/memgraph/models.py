"""Data models for the line-delimited knowledge graph file."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

CONFIDENCE_LEVELS = ("high", "medium", "low")

# Metadata keys accepted by update_entity, in on-disk spelling.
_METADATA_KEYS = {
    "sourceFile": "source_file",
    "confidence": "confidence",
    "accessCount": "access_count",
    "lastAccessedAt": "last_accessed_at",
}


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


@dataclass
class Metadata:
    """Provenance and usage counters attached to an entity."""

    confidence: str = "high"           # high | medium | low
    access_count: int = 0
    source_file: str | None = None
    last_accessed_at: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Metadata:
        return cls(
            confidence=d.get("confidence", "high"),
            access_count=int(d.get("accessCount", 0)),
            source_file=d.get("sourceFile"),
            last_accessed_at=d.get("lastAccessedAt"),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "confidence": self.confidence,
            "accessCount": self.access_count,
        }
        if self.source_file is not None:
            d["sourceFile"] = self.source_file
        if self.last_accessed_at is not None:
            d["lastAccessedAt"] = self.last_accessed_at
        return d

    def record_access(self, when: str) -> None:
        self.access_count += 1
        self.last_accessed_at = when

    def merge(self, updates: dict[str, Any]) -> None:
        """Shallow-merge camelCase updates over the current values.

        Raises ValueError on unknown keys or an unsupported confidence level.
        """
        unknown = sorted(set(updates) - set(_METADATA_KEYS))
        if unknown:
            msg = f"Unknown metadata field(s): {', '.join(unknown)}"
            raise ValueError(msg)
        confidence = updates.get("confidence", self.confidence)
        if confidence not in CONFIDENCE_LEVELS:
            msg = f"confidence must be one of {', '.join(CONFIDENCE_LEVELS)}, got {confidence!r}"
            raise ValueError(msg)
        if "accessCount" in updates and int(updates["accessCount"]) < 0:
            msg = "accessCount must be non-negative"
            raise ValueError(msg)
        for key, value in updates.items():
            attr = _METADATA_KEYS[key]
            setattr(self, attr, int(value) if attr == "access_count" else value)


@dataclass
class Entity:
    """A named node: type, observations, timestamps and usage metadata."""

    name: str
    entity_type: str
    observations: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""
    previous_observations: list[str] | None = None
    metadata: Metadata = field(default_factory=Metadata)

    @classmethod
    def new(
        cls,
        name: str,
        entity_type: str,
        observations: list[str] | None = None,
        *,
        source_file: str | None = None,
        when: str | None = None,
    ) -> Entity:
        """Build a freshly created entity with default metadata."""
        ts = when or now_iso()
        return cls(
            name=name,
            entity_type=entity_type,
            observations=list(observations or []),
            created_at=ts,
            updated_at=ts,
            metadata=Metadata(source_file=source_file, last_accessed_at=ts),
        )

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Entity:
        # Records from before timestamps/metadata existed still load.
        created = d.get("createdAt") or now_iso()
        updated = d.get("updatedAt") or created
        # Staleness math parses these later; reject bad values at load time.
        parse_timestamp(created)
        parse_timestamp(updated)
        previous = d.get("previousObservations")
        return cls(
            name=d["name"],
            entity_type=d["entityType"],
            observations=list(d.get("observations", [])),
            created_at=created,
            updated_at=updated,
            previous_observations=list(previous) if previous is not None else None,
            metadata=Metadata.from_dict(d.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "entityType": self.entity_type,
            "observations": list(self.observations),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "previousObservations": (
                list(self.previous_observations) if self.previous_observations is not None else None
            ),
            "metadata": self.metadata.to_dict(),
        }

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on name, type or any observation."""
        q = query.lower()
        return (
            q in self.name.lower()
            or q in self.entity_type.lower()
            or any(q in o.lower() for o in self.observations)
        )


@dataclass(frozen=True)
class Relation:
    """Directed, typed edge between two entity names. Identity is the triple."""

    source: str
    target: str
    relation_type: str

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Relation:
        return cls(source=d["from"], target=d["to"], relation_type=d["relationType"])

    def to_dict(self) -> dict[str, Any]:
        return {"from": self.source, "to": self.target, "relationType": self.relation_type}

    def __str__(self) -> str:
        return f"{self.source} --[{self.relation_type}]--> {self.target}"


@dataclass
class KnowledgeGraph:
    entities: list[Entity] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)

    def get(self, name: str) -> Entity | None:
        for e in self.entities:
            if e.name == name:
                return e
        return None

    def entity_names(self) -> set[str]:
        return {e.name for e in self.entities}

    def subgraph(self, entities: list[Entity]) -> KnowledgeGraph:
        """Graph of the given entities plus the relations between them."""
        names = {e.name for e in entities}
        return KnowledgeGraph(
            entities=list(entities),
            relations=[r for r in self.relations if r.source in names and r.target in names],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relations": [r.to_dict() for r in self.relations],
        }
