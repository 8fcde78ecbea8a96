"""
GraphStorage - single-file storage for the knowledge graph.

The backing file holds one JSON record per line:
- {"type": "entity", "name": ..., "entityType": ..., "observations": [...]}
- {"type": "relation", "from": ..., "to": ..., "relationType": ...}

Entities are always written before relations, each group in insertion
order, so save() followed by load() returns the same graph.

Every load() and save() hands the graph to a rebuild callback (the search
index), so the index never outlives the snapshot it was built from.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

from kmemory.core.models import Entity, KnowledgeGraph, Relation

DEFAULT_MEMORY_FILENAME = "memory.json"

# Directory the default memory file lives in ("beside the program")
PROGRAM_DIR = Path(__file__).resolve().parent.parent


def resolve_memory_path(value: Optional[str] = None, base_dir: Optional[Path] = None) -> Path:
    """Resolve the memory file location.

    Rules:
    1. No value -> <program dir>/memory.json
    2. Absolute value -> used as-is
    3. Relative value (e.g. "team.json") -> placed beside the program

    Args:
        value: Raw path, usually from MEMORY_FILE_PATH
        base_dir: Directory relative values resolve against (defaults to PROGRAM_DIR)
    """
    base_dir = Path(base_dir) if base_dir else PROGRAM_DIR
    if not value:
        return base_dir / DEFAULT_MEMORY_FILENAME

    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    return base_dir / path


def serialize_graph(graph: KnowledgeGraph) -> str:
    """Render the graph as newline-delimited records (entities first)."""
    lines: List[str] = []
    for entity in graph.entities:
        lines.append(_dump_record({"type": "entity", **entity.to_dict()}))
    for relation in graph.relations:
        lines.append(_dump_record({"type": "relation", **relation.to_dict()}))
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def parse_graph(content: str) -> KnowledgeGraph:
    """Parse newline-delimited records into a graph.

    Records are split on LF only, so U+2028, U+2029 and U+0085 inside
    string values stay part of their record. Blank lines are skipped and records
    with an unknown "type" are ignored.
    A malformed line raises json.JSONDecodeError.
    """
    graph = KnowledgeGraph()
    for line in content.split("\n"):
        if not line.strip():
            continue
        item = json.loads(line)
        record_type = item.get("type")
        if record_type == "entity":
            graph.entities.append(Entity.from_dict(item))
        elif record_type == "relation":
            graph.relations.append(Relation.from_dict(item))
    return graph


def _dump_record(record: dict) -> str:
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


class GraphStorage:
    """Loads and flushes the whole graph to one file.

    Writes go to a temporary sibling first and are moved into place with
    os.replace(), so a failed save leaves the previous file intact.
    """

    def __init__(
        self,
        memory_path: Path,
        on_rebuild: Optional[Callable[[KnowledgeGraph], None]] = None,
    ):
        """Initialize storage.

        Args:
            memory_path: Path to the backing record file
            on_rebuild: Called with the graph after every load and save
        """
        self.memory_path = Path(memory_path)
        self._on_rebuild = on_rebuild

    def exists(self) -> bool:
        return self.memory_path.exists()

    def load(self) -> KnowledgeGraph:
        """Read the backing file.

        Returns an empty graph when the file does not exist. Any other
        read or parse failure propagates.
        """
        try:
            content = self.memory_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            graph = KnowledgeGraph()
        else:
            graph = parse_graph(content)

        self._rebuild(graph)
        return graph

    def save(self, graph: KnowledgeGraph) -> None:
        """Atomically overwrite the backing file with the full graph."""
        content = serialize_graph(graph)
        directory = self.memory_path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.memory_path.name}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            if self.memory_path.exists():
                os.chmod(tmp_name, self.memory_path.stat().st_mode & 0o777)
            os.replace(tmp_name, self.memory_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        self._rebuild(graph)

    def _rebuild(self, graph: KnowledgeGraph) -> None:
        if self._on_rebuild is not None:
            self._on_rebuild(graph)


__all__ = [
    "GraphStorage",
    "resolve_memory_path",
    "serialize_graph",
    "parse_graph",
    "DEFAULT_MEMORY_FILENAME",
    "PROGRAM_DIR",
]
