"""Load and save the knowledge graph file.

GraphStore is the persistence layer:
    store = GraphStore("/path/to/memory.json")
    graph = await store.load()
    async with store.write_lock():
        graph = await store.load()
        graph.entities.append(entity)
        await store.save(graph)

File layout (UTF-8, one JSON object per line, rewritten in full on every save):
    {"type": "meta", "version": 2, "timestamp": "..."}
    {"type": "entity", "name": ..., "entityType": ..., "observations": [...], ...}
    {"type": "relation", "from": ..., "to": ..., "relationType": ...}

Saves go to <path>.tmp, are fsynced, then renamed over the target, so readers
see either the old or the new file and never a partial one.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from memgraph.models import Entity, KnowledgeGraph, Relation, now_iso

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

STORAGE_VERSION = 2

logger = logging.getLogger("memgraph.store")


@dataclass
class CorruptLine:
    """A line of the graph file that could not be decoded."""

    line_number: int                   # 1-based, counting non-empty lines
    error: str


def _decode_line(line: str) -> Entity | Relation | None:
    """Decode one record. Returns None for meta and unknown record types."""
    obj: Any = json.loads(line)
    if not isinstance(obj, dict):
        msg = f"expected a JSON object, got {type(obj).__name__}"
        raise ValueError(msg)
    record = dict(obj)
    kind = record.pop("type", None)
    if kind == "entity":
        return Entity.from_dict(record)
    if kind == "relation":
        return Relation.from_dict(record)
    return None


def _encode(graph: KnowledgeGraph) -> str:
    lines = [json.dumps({"type": "meta", "version": STORAGE_VERSION, "timestamp": now_iso()})]
    lines += [json.dumps({"type": "entity", **e.to_dict()}) for e in graph.entities]
    lines += [json.dumps({"type": "relation", **r.to_dict()}) for r in graph.relations]
    return "\n".join(lines) + "\n"


class GraphStore:
    """Line-delimited JSON graph file with a single-writer lock."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def tmp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def write_lock(self) -> AsyncIterator[None]:
        """Hold the exclusive writer lock for a load-mutate-save cycle.

        Waiters are served in arrival order. Not reentrant.
        """
        async with self._lock:
            yield

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def load(self) -> KnowledgeGraph:
        graph, _ = await self.load_with_diagnostics()
        return graph

    async def load_with_diagnostics(self) -> tuple[KnowledgeGraph, list[CorruptLine]]:
        """Load the graph, skipping lines that fail to decode.

        A missing file is an empty graph. Other OSErrors propagate.
        """
        return await asyncio.to_thread(self._load_sync)

    def _load_sync(self) -> tuple[KnowledgeGraph, list[CorruptLine]]:
        graph = KnowledgeGraph()
        diagnostics: list[CorruptLine] = []
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return graph, diagnostics

        # Decode per line so invalid UTF-8 only costs that line.
        lines = [raw for raw in data.split(b"\n") if raw.strip()]
        for index, raw in enumerate(lines, start=1):
            try:
                item = _decode_line(raw.decode("utf-8"))
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                logger.warning("skipping corrupt line %d of %s: %s", index, self.path, exc)
                diagnostics.append(CorruptLine(line_number=index, error=str(exc)))
                continue
            if isinstance(item, Entity):
                graph.entities.append(item)
            elif isinstance(item, Relation):
                graph.relations.append(item)
        return graph, diagnostics

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def save(self, graph: KnowledgeGraph) -> None:
        """Rewrite the whole file atomically (tmp + fsync + rename)."""
        content = _encode(graph)
        await asyncio.to_thread(self._write_atomic, content)
        logger.debug(
            "saved %d entities, %d relations to %s",
            len(graph.entities), len(graph.relations), self.path,
        )

    def _write_atomic(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.tmp_path
        with tmp.open("w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)
