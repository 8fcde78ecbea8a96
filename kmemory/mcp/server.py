"""kmemory MCP Server - Model Context Protocol server for the memory graph.

Provides 11 tools:

Create (4):
- create_entities: Create new entities (existing names are skipped)
- create_relations: Create new relations (existing triples are skipped)
- add_observations: Add observations to existing entities
- batch_create: Entities, relations and observations in one write

Delete (3):
- delete_entities: Delete entities and their relations
- delete_observations: Delete observations from entities
- delete_relations: Delete relations

Query (4):
- read_graph: Return the whole graph
- search_nodes: Search names, types and observations
- open_nodes: Fetch entities by exact name
- find_duplicates: Score candidates against the graph for duplicates
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    from mcp.server import Server
    from mcp.server.stdio import stdio_server
    from mcp.types import Tool, TextContent

    MCP_AVAILABLE = True
except ImportError:
    MCP_AVAILABLE = False

from kmemory.core.config import MemoryConfig, load_config
from kmemory.core.manager import KnowledgeGraphManager
from kmemory.mcp.validation import validate_arguments

SERVER_NAME = "memory-server"

# Global instance (initialized on first use or by init_manager)
_manager: Optional[KnowledgeGraphManager] = None


def init_manager(
    config: Optional[MemoryConfig] = None,
    memory_path: Optional[Path] = None,
) -> KnowledgeGraphManager:
    """(Re)initialize the global manager."""
    global _manager
    _manager = KnowledgeGraphManager(config=config or load_config(), memory_path=memory_path)
    return _manager


def _manager_instance() -> KnowledgeGraphManager:
    if _manager is None:
        return init_manager()
    return _manager


# ============================================================================
# Tool schemas
# ============================================================================

_ENTITY_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "The name of the entity"},
        "entityType": {"type": "string", "description": "The type of the entity"},
        "observations": {
            "type": "array",
            "items": {"type": "string"},
            "description": "An array of observation contents associated with the entity",
        },
    },
    "required": ["name", "entityType", "observations"],
}

_RELATION_SCHEMA = {
    "type": "object",
    "properties": {
        "from": {"type": "string", "description": "The name of the entity where the relation starts"},
        "to": {"type": "string", "description": "The name of the entity where the relation ends"},
        "relationType": {"type": "string", "description": "The type of the relation"},
    },
    "required": ["from", "to", "relationType"],
}

_OBSERVATION_SCHEMA = {
    "type": "object",
    "properties": {
        "entityName": {"type": "string", "description": "The name of the entity"},
        "contents": {
            "type": "array",
            "items": {"type": "string"},
            "description": "An array of observation contents",
        },
    },
    "required": ["entityName", "contents"],
}

_DUPLICATE_OPTIONS_SCHEMA = {
    "type": "object",
    "properties": {
        "entityNameSimilarityThreshold": {
            "type": "number",
            "description": "Similarity threshold (0-1) for entity name matching",
            "minimum": 0,
            "maximum": 1,
        },
        "considerEntityType": {
            "type": "boolean",
            "description": "Whether to consider entity type when checking duplicates",
        },
        "observationSimilarityThreshold": {
            "type": "number",
            "description": "Similarity threshold (0-1) for observation content matching",
            "minimum": 0,
            "maximum": 1,
        },
        "semanticMatchingEnabled": {
            "type": "boolean",
            "description": "Whether to enable semantic matching for improved duplicate detection",
        },
        "preset": {
            "type": "string",
            "description": "Preset modes: 'strict', 'standard', 'loose'",
            "enum": ["strict", "standard", "loose"],
        },
    },
}

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "create_entities",
        "description": "Create multiple new entities in the knowledge graph",
        "inputSchema": {
            "type": "object",
            "properties": {"entities": {"type": "array", "items": _ENTITY_SCHEMA}},
            "required": ["entities"],
        },
    },
    {
        "name": "create_relations",
        "description": "Create multiple new relations between entities in the knowledge graph. Relations should be in active voice",
        "inputSchema": {
            "type": "object",
            "properties": {"relations": {"type": "array", "items": _RELATION_SCHEMA}},
            "required": ["relations"],
        },
    },
    {
        "name": "add_observations",
        "description": "Add new observations to existing entities in the knowledge graph",
        "inputSchema": {
            "type": "object",
            "properties": {"observations": {"type": "array", "items": _OBSERVATION_SCHEMA}},
            "required": ["observations"],
        },
    },
    {
        "name": "delete_entities",
        "description": "Delete multiple entities and their associated relations from the knowledge graph",
        "inputSchema": {
            "type": "object",
            "properties": {
                "entityNames": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "An array of entity names to delete",
                },
            },
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
                            "entityName": {"type": "string", "description": "The name of the entity containing the observations"},
                            "observations": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "An array of observations to delete",
                            },
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
            "properties": {"relations": {"type": "array", "items": _RELATION_SCHEMA}},
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
                    "description": "The search query to match against entity names, types, and observation content",
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
            "properties": {
                "names": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "An array of entity names to retrieve",
                },
            },
            "required": ["names"],
        },
    },
    {
        "name": "find_duplicates",
        "description": "Find duplicates across entities, relations, and observations with fuzzy or semantic matching and detailed reporting",
        "inputSchema": {
            "type": "object",
            "properties": {
                "entities": {"type": "array", "items": _ENTITY_SCHEMA},
                "relations": {"type": "array", "items": _RELATION_SCHEMA},
                "observations": {"type": "array", "items": _OBSERVATION_SCHEMA},
                "checkExistingGraph": {
                    "type": "boolean",
                    "description": "Whether to check for duplicates within the existing graph",
                },
                "options": _DUPLICATE_OPTIONS_SCHEMA,
            },
        },
    },
    {
        "name": "batch_create",
        "description": "Batch create entities, relations, and observations in a single operation. Supports any combination of the three types.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "entities": {"type": "array", "items": _ENTITY_SCHEMA},
                "relations": {"type": "array", "items": _RELATION_SCHEMA},
                "observations": {"type": "array", "items": _OBSERVATION_SCHEMA},
            },
        },
    },
]

_SCHEMAS = {tool["name"]: tool["inputSchema"] for tool in TOOL_DEFINITIONS}


# ============================================================================
# Tool Handlers
# ============================================================================


def handle_create_entities(entities: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Create entities; returns only those actually inserted."""
    created = _manager_instance().create_entities(entities)
    return [e.to_dict() for e in created]


def handle_create_relations(relations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    created = _manager_instance().create_relations(relations)
    return [r.to_dict() for r in created]


def handle_add_observations(observations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Add observations. Raises EntityNotFoundError if any entity is missing."""
    results = _manager_instance().add_observations(observations)
    return [r.to_dict() for r in results]


def handle_delete_entities(entity_names: List[str]) -> str:
    _manager_instance().delete_entities(entity_names)
    return "Entities deleted successfully"


def handle_delete_observations(deletions: List[Dict[str, Any]]) -> str:
    _manager_instance().delete_observations(deletions)
    return "Observations deleted successfully"


def handle_delete_relations(relations: List[Dict[str, Any]]) -> str:
    _manager_instance().delete_relations(relations)
    return "Relations deleted successfully"


def handle_read_graph() -> Dict[str, Any]:
    return _manager_instance().read_graph().to_dict()


def handle_search_nodes(query: str) -> Dict[str, Any]:
    return _manager_instance().search_nodes(query).to_dict()


def handle_open_nodes(names: List[str]) -> Dict[str, Any]:
    return _manager_instance().open_nodes(names).to_dict()


def handle_find_duplicates(
    entities: Optional[List[Dict[str, Any]]] = None,
    relations: Optional[List[Dict[str, Any]]] = None,
    observations: Optional[List[Dict[str, Any]]] = None,
    check_existing_graph: bool = False,
    options: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Duplicate report for the given candidates.

    Args:
        options: camelCase option overrides (preset, thresholds, ...)
    """
    report = _manager_instance().find_duplicates(
        entities=entities,
        relations=relations,
        observations=observations,
        check_existing_graph=check_existing_graph,
        options=options,
    )
    return report.to_dict()


def handle_batch_create(
    entities: Optional[List[Dict[str, Any]]] = None,
    relations: Optional[List[Dict[str, Any]]] = None,
    observations: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    result = _manager_instance().batch_create(
        entities=entities, relations=relations, observations=observations
    )
    return result.to_dict()


def dispatch_tool(name: str, arguments: Optional[Dict[str, Any]]) -> str:
    """Route a tool call to its handler and render the result as text.

    Raises:
        ValueError: Unknown tool, or no arguments object at all
    """
    if name == "read_graph":
        return json.dumps(handle_read_graph(), indent=2, ensure_ascii=False)

    if name not in _SCHEMAS:
        raise ValueError(f"Unknown tool: {name}")

    if arguments is None:
        raise ValueError(f"No arguments provided for tool: {name}")

    problem = validate_arguments(_SCHEMAS[name], arguments)
    if problem:
        return json.dumps(problem, indent=2)

    result: Any = None
    if name == "create_entities":
        result = handle_create_entities(arguments["entities"])
    elif name == "create_relations":
        result = handle_create_relations(arguments["relations"])
    elif name == "add_observations":
        result = handle_add_observations(arguments["observations"])
    elif name == "delete_entities":
        return handle_delete_entities(arguments["entityNames"])
    elif name == "delete_observations":
        return handle_delete_observations(arguments["deletions"])
    elif name == "delete_relations":
        return handle_delete_relations(arguments["relations"])
    elif name == "search_nodes":
        result = handle_search_nodes(arguments["query"])
    elif name == "open_nodes":
        result = handle_open_nodes(arguments["names"])
    elif name == "find_duplicates":
        result = handle_find_duplicates(
            entities=arguments.get("entities"),
            relations=arguments.get("relations"),
            observations=arguments.get("observations"),
            check_existing_graph=bool(arguments.get("checkExistingGraph", False)),
            options=arguments.get("options"),
        )
    elif name == "batch_create":
        result = handle_batch_create(
            entities=arguments.get("entities"),
            relations=arguments.get("relations"),
            observations=arguments.get("observations"),
        )

    return json.dumps(result, indent=2, ensure_ascii=False)


# ============================================================================
# Server
# ============================================================================


def create_server() -> "Server":
    """Create the MCP server with all tools registered."""
    if not MCP_AVAILABLE:
        raise RuntimeError("MCP package not installed. Install with: pip install 'kmemory[mcp]'")

    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools():
        return [Tool(**tool) for tool in TOOL_DEFINITIONS]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict):
        try:
            text = dispatch_tool(name, arguments)
            return [TextContent(type="text", text=text)]
        except Exception as e:
            error_result = {"error": str(e), "type": type(e).__name__}
            return [TextContent(type="text", text=json.dumps(error_result))]

    return server


async def run_server():
    """Run the MCP server."""
    if not MCP_AVAILABLE:
        raise RuntimeError("MCP package not installed. Install with: pip install 'kmemory[mcp]'")

    _manager_instance()
    server = create_server()
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main():
    """CLI entry point for the MCP server."""
    import asyncio

    asyncio.run(run_server())


if __name__ == "__main__":
    main()
