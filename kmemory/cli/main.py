import json
from pathlib import Path
from typing import Optional, Tuple

import click

from kmemory import KnowledgeGraphManager, ObservabilityLogger, load_config
from kmemory.core.errors import KnowledgeGraphError
from kmemory.matching.duplicates import PRESETS


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _manager(ctx: click.Context) -> KnowledgeGraphManager:
    """Build the manager on first use so `log` and `--help` never touch the store."""
    obj = ctx.ensure_object(dict)
    if "manager" not in obj:
        config = load_config(
            obj.get("config_path"),
            cli_overrides={"memory_file_path": obj.get("memory_file")},
        )
        obj["manager"] = KnowledgeGraphManager(config=config)
    return obj["manager"]


# -------------------------
# CLI
# -------------------------


@click.group()
@click.option(
    "--memory-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Backing record file (overrides MEMORY_FILE_PATH and kmemory.yaml)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Path to a kmemory.yaml config file",
)
@click.pass_context
def cli(ctx: click.Context, memory_file: Optional[Path], config_path: Optional[Path]) -> None:
    """kmemory CLI.

    Read, search and edit a knowledge-graph memory file, and serve it over MCP.
    """
    ctx.ensure_object(dict)
    ctx.obj["memory_file"] = str(memory_file.resolve()) if memory_file else None
    ctx.obj["config_path"] = config_path


# ---- query commands ----


@cli.command("read")
@click.pass_context
def read_cmd(ctx: click.Context) -> None:
    """Print the whole graph."""
    _echo_json(_manager(ctx).read_graph().to_dict())


@cli.command("search")
@click.argument("query")
@click.pass_context
def search_cmd(ctx: click.Context, query: str) -> None:
    """Search names, types and observations."""
    _echo_json(_manager(ctx).search_nodes(query).to_dict())


@cli.command("open")
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def open_cmd(ctx: click.Context, names: Tuple[str, ...]) -> None:
    """Print the named entities and the relations among them."""
    _echo_json(_manager(ctx).open_nodes(names).to_dict())


@cli.command("duplicates")
@click.option("--preset", type=click.Choice(sorted(PRESETS)), default=None, help="Threshold preset")
@click.option("--semantic/--no-semantic", default=None, help="Override the preset's semantic matching")
@click.option("--check-existing", is_flag=True, default=False, help="Also scan the stored graph against itself")
@click.option(
    "--entities-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="JSON file with candidate entities (a list, or an object with an 'entities' key)",
)
@click.pass_context
def duplicates_cmd(
    ctx: click.Context,
    preset: Optional[str],
    semantic: Optional[bool],
    check_existing: bool,
    entities_file: Optional[Path],
) -> None:
    """Report likely duplicates."""
    candidates = {}
    if entities_file:
        data = json.loads(entities_file.read_text(encoding="utf-8"))
        candidates = data if isinstance(data, dict) else {"entities": data}

    options = {}
    if preset:
        options["preset"] = preset
    if semantic is not None:
        options["semantic_matching_enabled"] = semantic

    report = _manager(ctx).find_duplicates(
        entities=candidates.get("entities"),
        relations=candidates.get("relations"),
        observations=candidates.get("observations"),
        check_existing_graph=check_existing,
        options=options,
    )
    _echo_json(report.to_dict())


# ---- mutation commands ----


@cli.command("create-entity")
@click.argument("name")
@click.argument("entity_type")
@click.option("-o", "--observation", "observations", multiple=True, help="Observation (repeatable)")
@click.pass_context
def create_entity_cmd(ctx: click.Context, name: str, entity_type: str, observations: Tuple[str, ...]) -> None:
    """Create one entity (skipped if the name exists)."""
    created = _manager(ctx).create_entities(
        [{"name": name, "entityType": entity_type, "observations": list(observations)}]
    )
    _echo_json([e.to_dict() for e in created])


@cli.command("relate")
@click.argument("from_name")
@click.argument("relation_type")
@click.argument("to_name")
@click.pass_context
def relate_cmd(ctx: click.Context, from_name: str, relation_type: str, to_name: str) -> None:
    """Create the relation FROM -[TYPE]-> TO."""
    try:
        created = _manager(ctx).create_relations(
            [{"from": from_name, "to": to_name, "relationType": relation_type}]
        )
    except KnowledgeGraphError as e:
        raise click.ClickException(str(e))
    _echo_json([r.to_dict() for r in created])


@cli.command("add-observation")
@click.argument("entity_name")
@click.argument("contents", nargs=-1, required=True)
@click.pass_context
def add_observation_cmd(ctx: click.Context, entity_name: str, contents: Tuple[str, ...]) -> None:
    """Append observations to an existing entity."""
    try:
        results = _manager(ctx).add_observations(
            [{"entityName": entity_name, "contents": list(contents)}]
        )
    except KnowledgeGraphError as e:
        raise click.ClickException(str(e))
    _echo_json([r.to_dict() for r in results])


@cli.command("delete-entity")
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def delete_entity_cmd(ctx: click.Context, names: Tuple[str, ...]) -> None:
    """Delete entities and every relation touching them."""
    _manager(ctx).delete_entities(names)
    click.echo("Entities deleted successfully")


# ---- log commands ----


@cli.group()
def log() -> None:
    """Operation journal (summary, errors)."""


@log.command("summary")
@click.option("--db", type=click.Path(path_type=Path, exists=True), required=True, help="Path to the journal database")
@click.option("--session", default=None, help="Session ID (defaults to the most recent session)")
def log_summary(db: Path, session: Optional[str]) -> None:
    logger = ObservabilityLogger(db)
    summary = logger.get_session_summary(session or logger.latest_session())
    _echo_json(summary)


@log.command("errors")
@click.option("--db", type=click.Path(path_type=Path, exists=True), required=True, help="Path to the journal database")
@click.option("--limit", default=20, show_default=True, type=int)
def log_errors(db: Path, limit: int) -> None:
    logger = ObservabilityLogger(db)
    _echo_json([
        {"ts": e.ts, "session": e.session, "data": e.data}
        for e in logger.get_errors(limit)
    ])


# ---- server ----


@cli.command("serve")
@click.pass_context
def serve_cmd(ctx: click.Context) -> None:
    """Run the MCP server over stdio."""
    import asyncio

    from kmemory.mcp import server

    server.init_manager(config=_manager(ctx).config)
    try:
        asyncio.run(server.run_server())
    except RuntimeError as e:
        raise click.ClickException(str(e))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
