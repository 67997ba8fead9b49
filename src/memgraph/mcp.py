"""Stdio MCP server for the memory graph.

Tools:
    create_entities(entities)                 → entities actually added
    create_relations(relations)               → created / skipped / errors
    add_observations(observations)            → per-entity added / skipped + errors
    delete_entities(entityNames)
    delete_observations(deletions)
    delete_relations(relations)
    read_graph()                              → whole graph
    search_nodes(query)                       → matching subgraph
    open_nodes(names)                         → named subgraph
    get_stale_entities(days, entityType?)
    validate_component_props(componentName, propsToCheck)
    update_entity(name, observations?, metadata?)
    get_frequently_used(minAccessCount, entityType?)
    verify_graph_integrity(maxSuggestions?)   → orphaned relations + suggestions

Protocol: JSON-RPC 2.0 over stdin/stdout (MCP spec). Logs go to stderr.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import TYPE_CHECKING, Any

from memgraph import __version__
from memgraph.manager import KnowledgeGraphManager
from memgraph.models import Entity, Relation
from memgraph.store import GraphStore

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from memgraph.config import MemoryConfig
    from memgraph.results import AddObservationsResult, CreateRelationsResult, IntegrityReport

logger = logging.getLogger("memgraph.mcp")

_PROTOCOL_VERSION = "2024-11-05"
_SERVER_NAME = "memory-server"


def _string_array(description: str) -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


def _relation_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "from": {"type": "string", "description": "The name of the entity where the relation starts"},
            "to": {"type": "string", "description": "The name of the entity where the relation ends"},
            "relationType": {"type": "string", "description": "The type of the relation"},
        },
        "required": ["from", "to", "relationType"],
    }


def tool_defs() -> list[dict[str, Any]]:
    return [
        {
            "name": "create_entities",
            "description": "Create multiple new entities in the knowledge graph",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "entities": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": {"type": "string", "description": "The name of the entity"},
                                "entityType": {"type": "string", "description": "The type of the entity"},
                                "observations": _string_array(
                                    "An array of observation contents associated with the entity"
                                ),
                                "sourceFile": {"type": "string", "description": "Optional provenance tag"},
                            },
                            "required": ["name", "entityType", "observations"],
                        },
                    },
                },
                "required": ["entities"],
            },
        },
        {
            "name": "create_relations",
            "description": (
                "Create multiple new relations between entities in the knowledge graph. "
                "Relations should be in active voice"
            ),
            "inputSchema": {
                "type": "object",
                "properties": {"relations": {"type": "array", "items": _relation_schema()}},
                "required": ["relations"],
            },
        },
        {
            "name": "add_observations",
            "description": "Add new observations to existing entities in the knowledge graph",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "observations": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "entityName": {
                                    "type": "string",
                                    "description": "The name of the entity to add the observations to",
                                },
                                "contents": _string_array("An array of observation contents to add"),
                            },
                            "required": ["entityName", "contents"],
                        },
                    },
                },
                "required": ["observations"],
            },
        },
        {
            "name": "delete_entities",
            "description": "Delete multiple entities and their associated relations from the knowledge graph",
            "inputSchema": {
                "type": "object",
                "properties": {"entityNames": _string_array("An array of entity names to delete")},
                "required": ["entityNames"],
            },
        },
        {
            "name": "delete_observations",
            "description": "Delete specific observations from entities in the knowledge graph",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "deletions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "entityName": {
                                    "type": "string",
                                    "description": "The name of the entity containing the observations",
                                },
                                "observations": _string_array("An array of observations to delete"),
                            },
                            "required": ["entityName", "observations"],
                        },
                    },
                },
                "required": ["deletions"],
            },
        },
        {
            "name": "delete_relations",
            "description": "Delete multiple relations from the knowledge graph",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "relations": {
                        "type": "array",
                        "items": _relation_schema(),
                        "description": "An array of relations to delete",
                    },
                },
                "required": ["relations"],
            },
        },
        {
            "name": "read_graph",
            "description": "Read the entire knowledge graph",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "search_nodes",
            "description": "Search for nodes in the knowledge graph based on a query",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": (
                            "The search query to match against entity names, types, and observation content"
                        ),
                    },
                },
                "required": ["query"],
            },
        },
        {
            "name": "open_nodes",
            "description": "Open specific nodes in the knowledge graph by their names",
            "inputSchema": {
                "type": "object",
                "properties": {"names": _string_array("An array of entity names to retrieve")},
                "required": ["names"],
            },
        },
        {
            "name": "get_stale_entities",
            "description": "Find entities that haven't been updated recently",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "days": {"type": "number", "description": "Number of days to consider an entity stale"},
                    "entityType": {
                        "type": "string",
                        "description": "Optional: filter by entity type (e.g., 'component', 'service')",
                    },
                },
                "required": ["days"],
            },
        },
        {
            "name": "validate_component_props",
            "description": (
                "Validate component props to prevent hallucination. "
                "Checks if props exist in @props observations"
            ),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "componentName": {"type": "string", "description": "Name of the component to validate"},
                    "propsToCheck": _string_array("Array of prop names to validate"),
                },
                "required": ["componentName", "propsToCheck"],
            },
        },
        {
            "name": "update_entity",
            "description": "Update an existing entity, preserving previous observations",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Name of the entity to update"},
                    "observations": _string_array("New observations (optional)"),
                    "metadata": {"type": "object", "description": "Partial metadata to update (optional)"},
                },
                "required": ["name"],
            },
        },
        {
            "name": "get_frequently_used",
            "description": "Find entities that are accessed frequently",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "minAccessCount": {"type": "number", "description": "Minimum access count threshold"},
                    "entityType": {"type": "string", "description": "Optional: filter by entity type"},
                },
                "required": ["minAccessCount"],
            },
        },
        {
            "name": "verify_graph_integrity",
            "description": (
                "Verify the integrity of the knowledge graph by checking for orphaned entities in "
                "relationships. Returns hallucinated entity names with fuzzy search suggestions."
            ),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "maxSuggestions": {
                        "type": "number",
                        "description": (
                            "Maximum number of similar entity suggestions to return for each "
                            "orphaned entity (default: 3)"
                        ),
                    },
                },
            },
        },
    ]


# ---------------------------------------------------------------------------
# Argument decoding
# ---------------------------------------------------------------------------


def _require(args: dict[str, Any], key: str) -> Any:
    if key not in args or args[key] is None:
        msg = f"Missing required argument: {key}"
        raise ValueError(msg)
    return args[key]


def _relations(args: dict[str, Any]) -> list[Relation]:
    try:
        return [Relation.from_dict(r) for r in _require(args, "relations")]
    except (KeyError, TypeError) as exc:
        msg = f"Malformed relation: {exc}"
        raise ValueError(msg) from exc


def _dumps(obj: Any) -> str:
    return json.dumps(obj, indent=2)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def format_relations_result(result: CreateRelationsResult) -> str:
    message = ""
    if result.created:
        message += f"Created {len(result.created)} new relation(s).\n"
    if result.skipped:
        message += f"Skipped {len(result.skipped)} duplicate relation(s).\n"
    if result.errors:
        message += "\nErrors:\n"
        for e in result.errors:
            message += f"- {e.error}\n"
    return message + "\n" + _dumps(result.to_dict())


def format_observations_result(result: AddObservationsResult) -> str:
    message = ""
    if result.success:
        message += "Successfully processed:\n"
        for s in result.success:
            if s.added_observations:
                message += f"- {s.entity_name}: Added {len(s.added_observations)} observation(s)\n"
            if s.skipped_duplicates:
                message += f"  (Skipped {len(s.skipped_duplicates)} duplicate(s))\n"
    if result.errors:
        message += "\nErrors:\n"
        for e in result.errors:
            message += f"- {e.error}\n"
    return message + "\n" + _dumps(result.to_dict())


def format_integrity_report(report: IntegrityReport, *, include_json: bool = True) -> str:
    summary = report.summary
    if report.is_valid:
        lines = ["✅ Graph integrity verified: All relationships reference valid entities.", ""]
    else:
        lines = [
            f"⚠️ Graph integrity issues found: {summary.orphaned_relations} orphaned relationship(s)",
            "",
            f"Unique hallucinated entities ({len(summary.unique_orphaned_entities)}):",
        ]
        lines += [f"- {name}" for name in summary.unique_orphaned_entities]
        lines += ["", "Detailed orphaned relationships:"]
        for i, orphan in enumerate(report.orphaned_relations, start=1):
            lines += [
                "",
                f"{i}. Relation: {orphan.relation}",
                f"   Missing entity: '{orphan.missing_entity}' ({orphan.entity_position})",
            ]
            if orphan.suggestions:
                lines.append("   Did you mean:")
                lines += [
                    f"   - {s.name} ({s.entity_type}) - {round(s.similarity * 100)}% match"
                    for s in orphan.suggestions
                ]
            else:
                lines.append("   No similar entities found.")
    lines += [
        "",
        "Summary:",
        f"- Total relations: {summary.total_relations}",
        f"- Valid relations: {summary.valid_relations}",
        f"- Orphaned relations: {summary.orphaned_relations}",
        "",
    ]
    text = "\n".join(lines)
    if not include_json:
        return text
    return text + "\n" + _dumps(report.to_dict())


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class MemoryServer:
    """Maps tool calls onto KnowledgeGraphManager and renders the results as text."""

    def __init__(self, manager: KnowledgeGraphManager) -> None:
        self.manager = manager
        self._dispatch: dict[str, Callable[[dict[str, Any]], Awaitable[str]]] = {
            "create_entities": self._call_create_entities,
            "create_relations": self._call_create_relations,
            "add_observations": self._call_add_observations,
            "delete_entities": self._call_delete_entities,
            "delete_observations": self._call_delete_observations,
            "delete_relations": self._call_delete_relations,
            "read_graph": self._call_read_graph,
            "search_nodes": self._call_search_nodes,
            "open_nodes": self._call_open_nodes,
            "get_stale_entities": self._call_get_stale_entities,
            "validate_component_props": self._call_validate_component_props,
            "update_entity": self._call_update_entity,
            "get_frequently_used": self._call_get_frequently_used,
            "verify_graph_integrity": self._call_verify_graph_integrity,
        }

    @classmethod
    def from_config(cls, cfg: MemoryConfig) -> MemoryServer:
        return cls(KnowledgeGraphManager(GraphStore(cfg.memory_file_path)))

    async def _call_create_entities(self, args: dict[str, Any]) -> str:
        now = self.manager.now()
        try:
            entities = [
                Entity.new(
                    e["name"], e["entityType"], e.get("observations", []),
                    source_file=e.get("sourceFile"), when=now,
                )
                for e in _require(args, "entities")
            ]
        except (KeyError, TypeError) as exc:
            msg = f"Malformed entity: {exc}"
            raise ValueError(msg) from exc
        added = await self.manager.create_entities(entities)
        return _dumps([e.to_dict() for e in added])

    async def _call_create_relations(self, args: dict[str, Any]) -> str:
        result = await self.manager.create_relations(_relations(args))
        return format_relations_result(result)

    async def _call_add_observations(self, args: dict[str, Any]) -> str:
        additions = [(o["entityName"], list(o["contents"])) for o in _require(args, "observations")]
        result = await self.manager.add_observations(additions)
        return format_observations_result(result)

    async def _call_delete_entities(self, args: dict[str, Any]) -> str:
        await self.manager.delete_entities(_require(args, "entityNames"))
        return "Entities deleted successfully"

    async def _call_delete_observations(self, args: dict[str, Any]) -> str:
        deletions = [(d["entityName"], list(d["observations"])) for d in _require(args, "deletions")]
        await self.manager.delete_observations(deletions)
        return "Observations deleted successfully"

    async def _call_delete_relations(self, args: dict[str, Any]) -> str:
        await self.manager.delete_relations(_relations(args))
        return "Relations deleted successfully"

    async def _call_read_graph(self, args: dict[str, Any]) -> str:
        return _dumps((await self.manager.read_graph()).to_dict())

    async def _call_search_nodes(self, args: dict[str, Any]) -> str:
        graph = await self.manager.search_nodes(str(_require(args, "query")))
        return _dumps(graph.to_dict())

    async def _call_open_nodes(self, args: dict[str, Any]) -> str:
        graph = await self.manager.open_nodes(_require(args, "names"))
        return _dumps(graph.to_dict())

    async def _call_get_stale_entities(self, args: dict[str, Any]) -> str:
        stale = await self.manager.get_stale_entities(float(_require(args, "days")), args.get("entityType"))
        return _dumps([s.to_dict() for s in stale])

    async def _call_validate_component_props(self, args: dict[str, Any]) -> str:
        name = _require(args, "componentName")
        result = await self.manager.validate_component_props(name, _require(args, "propsToCheck"))
        if result is None:
            return f'Component "{name}" not found'
        return _dumps(result.to_dict())

    async def _call_update_entity(self, args: dict[str, Any]) -> str:
        name = _require(args, "name")
        entity = await self.manager.update_entity(
            name,
            observations=args.get("observations"),
            metadata=args.get("metadata"),
        )
        if entity is None:
            return f'Entity "{name}" not found'
        return _dumps(entity.to_dict())

    async def _call_get_frequently_used(self, args: dict[str, Any]) -> str:
        entities = await self.manager.get_frequently_used(
            int(_require(args, "minAccessCount")), args.get("entityType"),
        )
        return _dumps([e.to_dict() for e in entities])

    async def _call_verify_graph_integrity(self, args: dict[str, Any]) -> str:
        max_suggestions = args.get("maxSuggestions")
        if max_suggestions is None:
            max_suggestions = 3
        report = await self.manager.verify_graph_integrity(int(max_suggestions))
        return format_integrity_report(report)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        if name not in self._dispatch:
            msg = f"Unknown tool: {name}"
            raise ValueError(msg)
        return await self._dispatch[name](arguments)

    async def handle_message(self, msg: dict[str, Any]) -> dict[str, Any] | None:
        """Answer one JSON-RPC message. Returns None for notifications."""
        method = msg.get("method", "")
        msg_id = msg.get("id")

        if method == "initialize":
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {
                    "protocolVersion": _PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": _SERVER_NAME, "version": __version__},
                },
            }

        if method == "tools/list":
            return {"jsonrpc": "2.0", "id": msg_id, "result": {"tools": tool_defs()}}

        if method == "tools/call":
            params = msg.get("params", {})
            tool_name = params.get("name", "")
            arguments = params.get("arguments") or {}
            try:
                text = await self.call_tool(tool_name, arguments)
                is_error = False
            except Exception as exc:
                logger.exception("tool %s failed", tool_name)
                text = f"Error: {exc}"
                is_error = True
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "result": {"content": [{"type": "text", "text": text}], "isError": is_error},
            }

        if msg_id is not None:
            return {
                "jsonrpc": "2.0",
                "id": msg_id,
                "error": {"code": -32601, "message": f"Method not found: {method}"},
            }
        return None  # notification, e.g. notifications/initialized


async def _run_server(cfg: MemoryConfig) -> None:
    server = MemoryServer.from_config(cfg)
    reader = asyncio.StreamReader()
    loop = asyncio.get_running_loop()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    writer_transport, _ = await loop.connect_write_pipe(asyncio.BaseProtocol, sys.stdout.buffer)

    def write_json(obj: Any) -> None:
        line = json.dumps(obj) + "\n"
        writer_transport.write(line.encode())

    logger.info("memory server running on stdio, file=%s", cfg.memory_file_path)
    while True:
        try:
            line = await reader.readline()
        except (asyncio.IncompleteReadError, EOFError):
            break
        if not line:
            break
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("ignoring malformed JSON-RPC line")
            continue
        if not isinstance(msg, dict):
            continue

        response = await server.handle_message(msg)
        if response is not None:
            write_json(response)


def run_server(cfg: MemoryConfig) -> None:
    """Entry point for `memgraph serve`."""
    asyncio.run(_run_server(cfg))
