"""File-backed knowledge graph: entities, relations and observations.

Layout:
    memory.json             # one JSON record per line, rewritten atomically
    memory.json.tmp         # staging file for the atomic rename

memory.json line types:
    {"type":"meta", "version":2, "timestamp":...}                        # first line
    {"type":"entity", "name":..., "entityType":..., "observations":[...],
     "createdAt":..., "updatedAt":..., "previousObservations":null,
     "metadata":{"confidence":"high", "accessCount":0, ...}}
    {"type":"relation", "from":..., "to":..., "relationType":...}

Concurrent writes: one asyncio.Lock per GraphStore serialises every
load-mutate-save cycle in the process. Readers skip the lock.
"""

__version__ = "0.7.0"

from memgraph.config import MemoryConfig, load_config
from memgraph.manager import KnowledgeGraphManager
from memgraph.models import Entity, KnowledgeGraph, Metadata, Relation
from memgraph.store import GraphStore

__all__ = [
    "Entity",
    "GraphStore",
    "KnowledgeGraph",
    "KnowledgeGraphManager",
    "MemoryConfig",
    "Metadata",
    "Relation",
    "__version__",
    "load_config",
]
