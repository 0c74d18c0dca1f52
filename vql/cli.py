"""CLI entry point for vql."""

from __future__ import annotations

import json
import logging
import re
import sys
from contextlib import contextmanager
from pathlib import Path

import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from vql.activity import read_activity_log
from vql.config import Config
from vql.errors import VQLError
from vql.importer import read_principles_file
from vql.models import ASSET, ASSET_TYPE, ENTITY, PRINCIPLE, Review
from vql.storage.document import setup_storage
from vql.storage.repository import Repository

app = typer.Typer(
    help="Track code assets and their compliance reviews against engineering principles.",
    no_args_is_help=True,
)
err_console = Console(stderr=True)

FORMAT_HELP = "Output format: text or json"
_TRUE_FLAGS = {"t", "true", "y", "yes"}
_FALSE_FLAGS = {"f", "false", "n", "no"}


@contextmanager
def _errors():
    """Turn store errors into a red one-liner on stderr and exit status 1."""
    try:
        yield
    except VQLError as e:
        err_console.print(f"Error: {e}", style="red", markup=False, highlight=False, soft_wrap=True)
        raise typer.Exit(1)


def _config(ctx: typer.Context) -> Config:
    config = Config.load()
    storage = ctx.obj.get("storage") if ctx.obj else None
    if storage is not None:
        config.storage_path = storage
    issues = config.validate()
    if issues:
        for issue in issues:
            err_console.print(f"Config error: {issue}", style="red", markup=False, soft_wrap=True)
        raise typer.Exit(1)
    return config


def _repo(ctx: typer.Context) -> Repository:
    config = _config(ctx)
    with _errors():
        return config.repository()


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _rating_label(review: Review) -> str:
    return review.rating.label if review.rating else "-"


@app.callback()
def main_callback(
    ctx: typer.Context,
    storage: Path = typer.Option(
        None, "--storage", envvar="VQL_STORAGE_PATH",
        help="Path to vql_storage.json (default: search upwards for VQL/)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )
    ctx.obj = {"storage": storage}


# -- setup -------------------------------------------------------------------


@app.command("su")
def setup(
    directory: Path = typer.Argument(None, help="Project directory (default: current directory)"),
) -> None:
    """Set up VQL storage in a project directory."""
    project_dir = (directory or Path.cwd()).expanduser()
    with _errors():
        path, created = setup_storage(project_dir)
    if created:
        rprint(f"[green]Initialized VQL storage at {escape(str(path))}[/green]")
    else:
        rprint(f"VQL storage already exists at {escape(str(path))}")


# -- principles --------------------------------------------------------------

pr_app = typer.Typer(help="Principles (pr).", invoke_without_command=True)
app.add_typer(pr_app, name="pr")


def _show_principles(ctx: typer.Context, format: str) -> None:
    repo = _repo(ctx)
    with _errors():
        principles = repo.list_principles()
    if format == "json":
        _echo_json([p.to_dict() for p in principles])
        return
    if not principles:
        rprint("[yellow]No principles defined. Add one with 'vql pr add' or 'vql pr load'.[/yellow]")
        return
    for p in principles:
        rprint(f"[bold]{escape(p.long_name)}[/bold] ({escape(p.short_name)})")
        if p.guidance:
            rprint(escape(p.guidance))
        rprint()


@pr_app.callback()
def principles_default(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """List principles when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        _show_principles(ctx, format)


@pr_app.command("list")
def principles_list(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """List principles."""
    _show_principles(ctx, format)


@pr_app.command("add")
def principles_add(
    ctx: typer.Context,
    short_name: str = typer.Argument(help="Single-character shortcode"),
    long_name: str = typer.Argument(help="Full principle name"),
    guidance: str = typer.Argument(None, help="Guidance text"),
) -> None:
    """Add or overwrite a principle."""
    repo = _repo(ctx)
    with _errors():
        principle = repo.add_principle(short_name, long_name, guidance)
    rprint(f"[green]Principle {escape(principle.short_name)} ({escape(principle.long_name)}) saved[/green]")


@pr_app.command("load")
def principles_load(
    ctx: typer.Context,
    file: str = typer.Argument(help="Markdown file with '# Long Name (s)' headings"),
) -> None:
    """Import principles from a markdown file (all or nothing)."""
    repo = _repo(ctx)
    try:
        text = read_principles_file(file)
    except OSError as e:
        err_console.print(f"Error: cannot read {file}: {e}", style="red", markup=False, soft_wrap=True)
        raise typer.Exit(1)
    with _errors():
        imported = repo.import_principles(text)
    if not imported:
        rprint(f"[yellow]No principle headings found in {escape(file)}[/yellow]")
        return
    rprint(f"Imported [bold]{len(imported)}[/bold] principle(s) from {escape(file)}")
    for p in imported:
        rprint(f"  {escape(p.short_name)}: {escape(p.long_name)}")


# -- entities / asset types --------------------------------------------------

er_app = typer.Typer(help="Entity register (er).", invoke_without_command=True)
at_app = typer.Typer(help="Asset types (at).", invoke_without_command=True)
app.add_typer(er_app, name="er")
app.add_typer(at_app, name="at")


def _show_described(records: list, title: str, format: str) -> None:
    if format == "json":
        _echo_json([r.to_dict() for r in records])
        return
    if not records:
        rprint(f"[yellow]No {title.lower()} defined.[/yellow]")
        return
    table = Table(title=title)
    table.add_column("Short name", style="bold")
    table.add_column("Description")
    for r in records:
        table.add_row(escape(r.short_name), escape(r.description))
    rprint(table)


@er_app.callback()
def entities_default(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """List entities when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        entities_list(ctx, format)


@er_app.command("list")
def entities_list(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """List entities."""
    repo = _repo(ctx)
    with _errors():
        _show_described(repo.list_entities(), "Entities", format)


@er_app.command("add")
def entities_add(
    ctx: typer.Context,
    short_name: str = typer.Argument(help="Entity shortcode"),
    description: str = typer.Argument(help="What the entity is"),
) -> None:
    """Add or overwrite an entity."""
    repo = _repo(ctx)
    with _errors():
        entity = repo.add_entity(short_name, description)
    rprint(f"[green]Entity {escape(entity.short_name)} saved[/green]")


@at_app.callback()
def asset_types_default(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """List asset types when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        asset_types_list(ctx, format)


@at_app.command("list")
def asset_types_list(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """List asset types."""
    repo = _repo(ctx)
    with _errors():
        _show_described(repo.list_asset_types(), "Asset types", format)


@at_app.command("add")
def asset_types_add(
    ctx: typer.Context,
    short_name: str = typer.Argument(help="Single-character asset type shortcode"),
    description: str = typer.Argument(help="What kind of file this is"),
) -> None:
    """Add or overwrite an asset type."""
    repo = _repo(ctx)
    with _errors():
        asset_type = repo.add_asset_type(short_name, description)
    rprint(f"[green]Asset type {escape(asset_type.short_name)} saved[/green]")


# -- asset references --------------------------------------------------------

ar_app = typer.Typer(help="Asset references (ar).", invoke_without_command=True)
app.add_typer(ar_app, name="ar")


@ar_app.callback()
def assets_default(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """List asset references when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        assets_list(ctx, format)


@ar_app.command("list")
def assets_list(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """List asset references."""
    repo = _repo(ctx)
    with _errors():
        assets = repo.list_asset_references()
    if format == "json":
        _echo_json([a.to_dict() for a in assets])
        return
    if not assets:
        rprint("[yellow]No assets tracked. Add one with 'vql ar add'.[/yellow]")
        return
    table = Table(title="Assets")
    table.add_column("Short name", style="bold")
    table.add_column("Entity")
    table.add_column("Type")
    table.add_column("Path")
    table.add_column("Exemplar")
    table.add_column("Reviews")
    for a in assets:
        reviews = ", ".join(
            f"{p}:{r.rating.value if r.rating else '-'}" for p, r in a.principle_reviews.items()
        )
        table.add_row(
            escape(a.short_name), escape(a.entity), escape(a.asset_type),
            escape(a.path), "yes" if a.exemplar else "", escape(reviews),
        )
    rprint(table)


@ar_app.command("add")
def assets_add(
    ctx: typer.Context,
    short_name: str = typer.Argument(help="Asset shortcode"),
    entity: str = typer.Argument(help="Entity shortcode"),
    asset_type: str = typer.Argument(help="Asset type shortcode"),
    path: str = typer.Argument(help="File path (absolute or relative to the project)"),
) -> None:
    """Track a file as an asset (re-adding updates it and keeps its reviews)."""
    repo = _repo(ctx)
    with _errors():
        asset = repo.add_asset_reference(short_name, entity, asset_type, path)
    rprint(f"[green]Asset {escape(asset.short_name)} -> {escape(asset.path)} saved[/green]")


def _register_rename_delete(group: typer.Typer, kind: str, label: str) -> None:
    @group.command("rename", help=f"Rename a {label}, updating every reference.")
    def rename_record(
        ctx: typer.Context,
        old: str = typer.Argument(help=f"Current {label} shortcode"),
        new: str = typer.Argument(help=f"New {label} shortcode"),
    ) -> None:
        _rename(ctx, old, new, kind)

    @group.command("delete", help=f"Delete a {label}.")
    def delete_record(
        ctx: typer.Context,
        name: str = typer.Argument(help=f"{label.capitalize()} shortcode"),
    ) -> None:
        _delete(ctx, name, kind)


def _rename(ctx: typer.Context, old: str, new: str, kind: str | None) -> None:
    repo = _repo(ctx)
    with _errors():
        affected = repo.rename(old, new, kind)
    rprint(f"[green]Renamed {escape(old)} -> {escape(new)}[/green]")
    if affected:
        rprint(f"  Updated assets: {escape(', '.join(affected))}")


def _delete(ctx: typer.Context, name: str, kind: str | None) -> None:
    repo = _repo(ctx)
    with _errors():
        affected = repo.delete(name, kind)
    rprint(f"[green]Deleted {escape(name)}[/green]")
    if affected:
        rprint(f"  Removed reviews from: {escape(', '.join(affected))}")


_register_rename_delete(pr_app, PRINCIPLE, "principle")
_register_rename_delete(er_app, ENTITY, "entity")
_register_rename_delete(at_app, ASSET_TYPE, "asset type")
_register_rename_delete(ar_app, ASSET, "asset")


@app.command("rn")
def rename(
    ctx: typer.Context,
    old: str = typer.Argument(help="Existing identifier of any kind"),
    new: str = typer.Argument(help="New identifier"),
) -> None:
    """Rename any identifier, updating every reference."""
    _rename(ctx, old, new, None)


@app.command("dl")
def delete(
    ctx: typer.Context,
    name: str = typer.Argument(help="Identifier of any kind"),
) -> None:
    """Delete any identifier (principle reviews cascade)."""
    _delete(ctx, name, None)


# -- reviews -----------------------------------------------------------------


@app.command("st")
def store(
    ctx: typer.Context,
    asset: str = typer.Argument(help="Asset shortcode"),
    principle: str = typer.Argument(help="Principle shortcode"),
    text: list[str] = typer.Argument(help="Review text"),
    rating: str = typer.Option(None, "--rating", "-r", help="H, M or L (default: read from text)"),
) -> None:
    """Store a review, replacing any previous one for this asset and principle."""
    repo = _repo(ctx)
    with _errors():
        review = repo.store_review(asset, principle, " ".join(text), rating)
    rprint(
        f"[green]Review stored for {escape(asset)}.{escape(principle)}[/green] "
        f"(rating: {_rating_label(review)})"
    )


@app.command("se")
def set_exemplar(
    ctx: typer.Context,
    asset: str = typer.Argument(help="Asset shortcode"),
    flag: str = typer.Argument(help="t/true/yes or f/false/no"),
) -> None:
    """Mark or unmark an asset as an exemplar."""
    value = flag.strip().lower()
    if value not in _TRUE_FLAGS | _FALSE_FLAGS:
        err_console.print(
            f"Error: exemplar flag must be true or false, got '{flag}'",
            style="red", markup=False, soft_wrap=True,
        )
        raise typer.Exit(1)
    repo = _repo(ctx)
    with _errors():
        updated = repo.set_exemplar(asset, value in _TRUE_FLAGS)
    state = "is now" if updated.exemplar else "is no longer"
    rprint(f"[green]{escape(asset)} {state} an exemplar[/green]")


@app.command("sc")
def set_compliance(
    ctx: typer.Context,
    asset: str = typer.Argument(help="Asset shortcode"),
    principle: str = typer.Argument(help="Principle shortcode"),
    level: str = typer.Argument(help="H, M or L"),
) -> None:
    """Set a compliance rating without touching the analysis text."""
    repo = _repo(ctx)
    with _errors():
        review = repo.set_compliance(asset, principle, level)
    rprint(
        f"[green]Compliance for {escape(asset)}.{escape(principle)} "
        f"set to {_rating_label(review)}[/green]"
    )


@app.command("q")
def query(
    ctx: typer.Context,
    asset: str = typer.Argument(help="Asset shortcode"),
    principles: str = typer.Argument(None, help="Comma-separated principle shortcodes"),
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """Show the stored reviews for an asset."""
    wanted = [p.strip() for p in principles.split(",") if p.strip()] if principles else None
    repo = _repo(ctx)
    with _errors():
        reviews = repo.query_reviews(asset, wanted)
        names = {p.short_name: p.long_name for p in repo.list_principles()}

    if format == "json":
        _echo_json({"asset": asset, "reviews": {k: r.to_dict() for k, r in reviews.items()}})
        return
    if not reviews:
        rprint(f"[yellow]No reviews stored for {escape(asset)}[/yellow]")
        return
    for key, review in reviews.items():
        rprint(f"[bold]{escape(names.get(key, key))} ({escape(key)})[/bold]: {_rating_label(review)}")
        if review.analysis:
            rprint(escape(review.analysis))
        rprint()


# -- reporting ---------------------------------------------------------------


@app.command()
def summary(
    ctx: typer.Context,
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """Show counts and the compliance rating histogram."""
    repo = _repo(ctx)
    with _errors():
        s = repo.summary()
    if format == "json":
        _echo_json(s)
        return
    ratings = s["ratings"]
    rprint("[bold]vql summary:[/bold]")
    rprint(f"  Principles:   {s['principles']}")
    rprint(f"  Entities:     {s['entities']}")
    rprint(f"  Asset types:  {s['asset_types']}")
    rprint(f"  Assets:       {s['asset_references']} ({s['exemplars']} exemplar(s))")
    rprint(f"  Reviews:      {s['reviews']}")
    rprint(
        f"  Ratings:      [green]H {ratings['H']}[/green]  "
        f"[yellow]M {ratings['M']}[/yellow]  [red]L {ratings['L']}[/red]  "
        f"unrated {ratings['unrated']}"
    )
    rprint(f"  Last modified: {s['last_modified']}")


@app.command()
def activity(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries to show"),
    tool: str = typer.Option(None, "--tool", help="Only show calls to this tool"),
    format: str = typer.Option("text", "--format", "-f", help=FORMAT_HELP),
) -> None:
    """Show recent MCP tool calls from the activity log."""
    config = _config(ctx)
    try:
        storage_path = config.resolve_storage_path()
    except VQLError:
        storage_path = None
    log_path = config.resolve_log_path(storage_path)
    entries = read_activity_log(log_path, limit=limit, tool_name=tool)
    if format == "json":
        _echo_json(entries)
        return
    if not entries:
        rprint(f"[yellow]No activity recorded in {escape(str(log_path))}[/yellow]")
        return
    table = Table(title="Recent tool calls")
    table.add_column("Time")
    table.add_column("Tool", style="bold")
    table.add_column("ms", justify="right")
    table.add_column("Result")
    for e in entries:
        if e.get("error"):
            outcome = f"[red]{escape(e['error'])}[/red]"
        else:
            preview = (e.get("result_preview") or "").strip()
            outcome = escape(preview.splitlines()[0][:60]) if preview else ""
        table.add_row(
            escape(str(e.get("timestamp", ""))), escape(str(e.get("tool_name", ""))),
            str(e.get("duration_ms", "")), outcome,
        )
    rprint(table)


@app.command()
def serve(ctx: typer.Context) -> None:
    """Start the MCP server (called by Claude Code / Cursor automatically)."""
    import asyncio
    from vql.mcp_server import main as mcp_main

    storage = ctx.obj.get("storage") if ctx.obj else None
    asyncio.run(mcp_main(storage))


# -- legacy argument forms ---------------------------------------------------

_LEGACY_COMMANDS = {
    "-su": "su", "-pr": "pr", "-er": "er", "-at": "at", "-ar": "ar",
    "-st": "st", "-str": "st", "-se": "se", "-sc": "sc", "-rn": "rn", "-dl": "dl",
}
_LEGACY_SUBCOMMANDS = {"-add": "add", "-get": "load", "-rn": "rename", "-dl": "delete", "-list": "list"}
_QUERY_FORM = re.compile(r"^(?P<asset>[^\s?()]+)\s*\?\s*(?:\((?P<principles>[^)]*)\))?\s*$")


def _split_global_options(argv: list[str]) -> tuple[list[str], list[str]]:
    """Separate leading --storage/-v options from the command words."""
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in ("-v", "--verbose") or arg.startswith("--storage="):
            i += 1
        elif arg == "--storage":
            i += 2
        else:
            break
    return argv[:i], argv[i:]


def translate_argv(argv: list[str]) -> list[str]:
    """Rewrite the original dash-style and 'asset ? (p)' forms into subcommands."""
    options, words = _split_global_options(argv)
    if not words:
        return argv

    head = words[0]
    if head in _LEGACY_COMMANDS:
        command = _LEGACY_COMMANDS[head]
        rest = words[1:]
        if command in ("pr", "er", "at", "ar") and rest and rest[0] in _LEGACY_SUBCOMMANDS:
            return options + [command, _LEGACY_SUBCOMMANDS[rest[0]], *rest[1:]]
        return options + [command, *rest]

    match = _QUERY_FORM.match(" ".join(words))
    if match:
        translated = ["q", match.group("asset")]
        principles = match.group("principles")
        if principles and principles.strip():
            translated.append(",".join(p.strip() for p in principles.split(",") if p.strip()))
        return options + translated
    return argv


def main() -> None:
    app(args=translate_argv(sys.argv[1:]), prog_name="vql")


if __name__ == "__main__":
    main()
