"""CLI entry point for beadgraph."""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import __version__
from .config import BeadgraphConfig, ConfigValidationError, load_config
from .graph import graphs_to_json
from .layout import DIRECTIONS
from .log import setup_logging
from .service import GraphService, find_repo_root
from .sync import SyncStatus
from .tracker import IssueTracker


def _status_style(status: str) -> str:
    return {"open": "yellow", "in_progress": "cyan", "closed": "green"}.get(status, "dim")


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="beadgraph", add_help=False)
    p.add_argument("--cwd", default=None)
    sub = p.add_subparsers(dest="command")

    graph = sub.add_parser("graph", add_help=False)
    graph.add_argument("--json", action="store_true")

    lay = sub.add_parser("layout", add_help=False)
    lay.add_argument("--direction", type=str.upper, choices=DIRECTIONS, default=None)
    lay.add_argument("--json", action="store_true")

    sync = sub.add_parser("sync", add_help=False)
    sync.add_argument("--message", "-m", default=None)

    serve = sub.add_parser("serve", add_help=False)
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8420)
    serve.add_argument("--reload", action="store_true")
    return p


def cmd_graph(service: GraphService, args: argparse.Namespace, console: Console) -> int:
    result = service.graphs()
    if not result.ok:
        console.print(Text(result.error.message if result.error else "graph failed", style="red"))
        return 1
    graphs = result.data or []

    if args.json:
        json.dump(graphs_to_json(graphs), sys.stdout, indent=2)
        print()
        return 0

    if not graphs:
        console.print(Text("No issues.", style="dim"))
        return 0

    shared = graphs[0]
    table = Table(title="Roots", expand=False, show_edge=False, pad_edge=False)
    table.add_column("ID", style="bold")
    table.add_column("Status")
    table.add_column("Title")
    table.add_column("Blocks", justify="right", style="dim")
    for g in graphs:
        root = g.root
        table.add_row(
            root.id,
            Text(root.status, style=_status_style(root.status)),
            root.title[:60],
            str(root.dependent_count),
        )
    console.print(table)
    console.print(
        Text(
            f"{len(shared.issues)} issue(s), {len(shared.dependencies)} dependency(ies)",
            style="dim",
        )
    )
    return 0


def cmd_layout(service: GraphService, args: argparse.Namespace, console: Console) -> int:
    options = service.config.layout
    if args.direction and args.direction != options.direction:
        options = replace(options, direction=args.direction)
    result = service.positioned(options)
    if not result.ok:
        console.print(Text(result.error.message if result.error else "layout failed", style="red"))
        return 1
    positioned = result.data

    if args.json:
        json.dump(positioned.to_json(), sys.stdout, indent=2)
        print()
        return 0

    table = Table(
        title=f"Layout ({options.direction})", expand=False, show_edge=False, pad_edge=False
    )
    table.add_column("ID", style="bold")
    table.add_column("Layer", justify="right")
    table.add_column("X", justify="right", style="dim")
    table.add_column("Y", justify="right", style="dim")
    table.add_column("Title")
    for node in positioned.nodes:
        data = node.get("data") or {}
        table.add_row(
            node["id"],
            str(node["layer"]),
            f"{node['position']['x']:g}",
            f"{node['position']['y']:g}",
            str(data.get("title", ""))[:50],
        )
    console.print(table)
    return 0


def cmd_sync(service: GraphService, args: argparse.Namespace, console: Console) -> int:
    service.sync_now(args.message)
    state = service.controller.state
    if state.status is SyncStatus.ERROR:
        console.print(
            Panel(Text(state.last_error or "sync failed"), title="sync", style="red", expand=False)
        )
        return 1
    console.print(Panel(f"Synced [bold]{service.repo_root}[/bold]", style="green", expand=False))
    return 0


def cmd_serve(root: Path, args: argparse.Namespace, console: Console) -> int:
    import uvicorn

    from .web import ROOT_ENV

    os.environ[ROOT_ENV] = str(root)
    console.print(
        Panel(
            f"Starting web server at [bold]http://{args.host}:{args.port}[/bold]",
            title="beadgraph serve",
            style="cyan",
            expand=False,
        )
    )
    uvicorn.run(
        "beadgraph.web:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


def _print_help(console: Console) -> None:
    help_text = Text()
    help_text.append("beadgraph", style="bold")
    help_text.append(f" {__version__}", style="dim")
    help_text.append(": dependency graphs and git sync for beads issues")
    console.print(help_text)
    console.print()

    cmds = Table(show_header=False, expand=False, show_edge=False, pad_edge=False, box=None)
    cmds.add_column("Command", style="bold cyan")
    cmds.add_column("Description")
    cmds.add_row("beadgraph graph", "List graph roots")
    cmds.add_row("beadgraph layout", "Print positioned nodes")
    cmds.add_row("beadgraph sync", "Commit .beads and run bd sync now")
    cmds.add_row("beadgraph serve", "Start the web API")
    console.print(cmds)
    console.print()

    opts = Table(show_header=False, expand=False, show_edge=False, pad_edge=False, box=None)
    opts.add_column("Option", style="bold")
    opts.add_column("Description", style="dim")
    opts.add_row("--cwd DIR", "Repository to operate on (default: enclosing git repo)")
    opts.add_row("--json", "JSON output (graph, layout)")
    opts.add_row("--direction TB|LR", "Layout direction (layout)")
    opts.add_row("--message M", "Commit message (sync)")
    opts.add_row("--host/--port/--reload", "Server options (serve)")
    opts.add_row("--version", "Show version")
    console.print(opts)


def _load(root: Path, console: Console) -> BeadgraphConfig | None:
    try:
        return load_config(root)
    except ConfigValidationError as exc:
        console.print(Text(f"Invalid config: {exc}", style="red"))
        return None


def main(argv: list[str] | None = None, *, tracker: IssueTracker | None = None) -> None:
    raw = argv if argv is not None else sys.argv[1:]
    console = Console()

    if "--version" in raw:
        console.print(Text(f"beadgraph {__version__}", style="bold"))
        sys.exit(0)
    if not raw or "--help" in raw or "-h" in raw:
        _print_help(console)
        sys.exit(0)

    args = _parser().parse_args(raw)
    if args.command is None:
        _print_help(console)
        sys.exit(1)

    root = Path(args.cwd).resolve() if args.cwd else find_repo_root()

    if args.command == "serve":
        sys.exit(cmd_serve(root, args, console))

    config = _load(root, console)
    if config is None:
        sys.exit(1)
    setup_logging(config.log_level)

    service = GraphService(config, tracker=tracker)
    try:
        if args.command == "graph":
            code = cmd_graph(service, args, console)
        elif args.command == "layout":
            code = cmd_layout(service, args, console)
        else:
            code = cmd_sync(service, args, console)
    finally:
        service.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
