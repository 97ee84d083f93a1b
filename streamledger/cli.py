"""CLI entry point for streamledger."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich import print as rprint
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.tree import Tree

from streamledger.config import StreamLedgerConfig, load_config, save_last_used_stream
from streamledger.config.loader import DEFAULT_CONFIG_TEMPLATE, PROJECT_CONFIG, config_paths
from streamledger.errors import StreamLedgerError
from streamledger.hierarchy import RuleKind, RuleView, StreamNode, normalize_rule_path, path_key
from streamledger.history import RevisionHistory
from streamledger.publish import PublishResult, snapshot_file_path
from streamledger.session import HierarchySession
from streamledger.snapshot import SnapshotDiff
from streamledger.vcs import create_server

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="streamledger",
    help="Edit stream ignore/remap rules and keep a versioned history of them.",
)

config_app = typer.Typer(help="Manage streamledger configuration.")
app.add_typer(config_app, name="config")

# Global state
_config: StreamLedgerConfig | None = None
_config_path: str | None = None
_log_handler: logging.Handler | None = None

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _get_config() -> StreamLedgerConfig:
    if _config is None:
        return load_config()
    return _config


def _setup_logging(cfg: StreamLedgerConfig) -> None:
    """Install one handler on the root logger, replacing any we installed before."""
    global _log_handler
    root = logging.getLogger()
    if _log_handler is not None:
        root.removeHandler(_log_handler)
    if cfg.log_format == "rich":
        handler: logging.Handler = RichHandler(show_time=False, show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root.addHandler(handler)
    root.setLevel(_LOG_LEVELS[cfg.log_level])
    _log_handler = handler


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to streamledger.yaml")
    ] = None,
) -> None:
    """Global options."""
    global _config, _config_path
    try:
        _config = load_config(config)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    _config_path = config
    _setup_logging(_config)


@contextmanager
def _cli_errors() -> Iterator[None]:
    """Print expected failures and exit 1 instead of showing a traceback."""
    try:
        yield
    except (StreamLedgerError, ValueError) as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except KeyError as e:
        rprint(f"[red]Error:[/red] {e.args[0] if e.args else e}")
        raise typer.Exit(1)


@contextmanager
def _connected(cfg: StreamLedgerConfig) -> Iterator[HierarchySession]:
    server = create_server(cfg.connection)
    server.connect()
    try:
        yield HierarchySession(server, cfg)
    finally:
        server.disconnect()


def _remember_stream(cfg: StreamLedgerConfig) -> None:
    """Persist last_used_stream into the config file in use, if there is one."""
    target = next((p for p in config_paths(_config_path) if p.exists()), None)
    if target is None:
        return
    try:
        save_last_used_stream(target, cfg.last_used_stream)
    except OSError as e:
        logger.warning("Could not save last used stream to %s: %s", target, e)


def _load(session: HierarchySession, root: str) -> None:
    session.load(root)
    _remember_stream(session.config)


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def _node_label(node: StreamNode) -> str:
    count = len(node.local_rules)
    rules = f" [dim]({count} rule{'s' if count != 1 else ''})[/dim]" if count else ""
    return f"[bold]{node.name}[/bold] [cyan]{node.path}[/cyan] [dim]{node.stream_type}[/dim]{rules}"


def _display_tree(root: StreamNode) -> None:
    tree = Tree(_node_label(root))
    pending = [(root, tree)]
    while pending:
        node, branch = pending.pop()
        for child in node.children:
            pending.append((child, branch.add(_node_label(child))))
    rprint(tree)


def _display_diff(diff: SnapshotDiff, title: str) -> None:
    if diff.is_empty:
        rprint("[green]No differences.[/green]")
        return
    table = Table(title=f"{title} ({diff.summary()})")
    table.add_column("", justify="center")
    table.add_column("Stream", style="cyan")
    table.add_column("Rule")
    for rule in diff.added:
        table.add_row("[green]+[/green]", rule.owner, rule.describe())
    for rule in diff.removed:
        table.add_row("[red]-[/red]", rule.owner, rule.describe())
    for change in diff.modified:
        table.add_row(
            "[yellow]~[/yellow]",
            change.new.owner,
            f"{change.old.describe()} [dim]=>[/dim] {change.new.describe()}",
        )
    rprint(table)


def _display_publish_result(result: PublishResult) -> None:
    submitted = (
        f"[dim]Submitted:[/dim]    change {result.submitted_changelist}"
        if result.submitted
        else f"[dim]Pending:[/dim]      change {result.changelist}"
    )
    rprint(
        Panel(
            f"[dim]Stream:[/dim]       {result.stream_path}\n"
            f"[dim]Snapshot:[/dim]     {result.snapshot_path}\n"
            f"[dim]Local file:[/dim]   {result.local_path}\n"
            f"[dim]Opened via:[/dim]   {result.open_action.value}\n"
            f"{submitted}",
            title="Published" if result.submitted else "Saved (pending)",
            border_style="green" if result.submitted else "yellow",
        )
    )
    rprint(result.message)


# ---------------------------------------------------------------------------
# Read-only commands
# ---------------------------------------------------------------------------


@app.command()
def tree(
    root: str = typer.Argument(..., help="Root stream path, e.g. //depot/main"),
) -> None:
    """Show the stream hierarchy under ROOT."""
    cfg = _get_config()
    with _cli_errors(), _connected(cfg) as session:
        _load(session, root)
        _display_tree(session.hierarchy.root)


@app.command()
def rules(
    root: str = typer.Argument(..., help="Root stream path"),
    stream: str = typer.Argument(..., help="Stream whose rules to show"),
    view: Annotated[
        RuleView, typer.Option("--view", help="local, inherited, or all")
    ] = RuleView.ALL,
) -> None:
    """List the rules visible to STREAM."""
    cfg = _get_config()
    with _cli_errors(), _connected(cfg) as session:
        _load(session, root)
        resolved = session.rules(stream, view)
        if not resolved:
            rprint(f"[yellow]No {view.value} rules for {stream}.[/yellow]")
            return
        table = Table(title=f"Rules for {stream} ({view.value})")
        table.add_column("Kind", style="cyan")
        table.add_column("Pattern")
        table.add_column("Target", style="green")
        table.add_column("Source", style="dim")
        for r in resolved:
            source = "local" if r.is_local else f"inherited from {r.owner}"
            table.add_row(r.rule.kind.value, r.rule.pattern, r.rule.remap_target or "-", source)
        rprint(table)


@app.command()
def history(
    root: str = typer.Argument(..., help="Root stream path"),
) -> None:
    """List the published revisions of ROOT's snapshot file."""
    cfg = _get_config()
    with _cli_errors(), _connected(cfg) as session:
        path = snapshot_file_path(root, cfg.history_storage_path)
        revisions = RevisionHistory(session.server).list_revisions(path)
        if not revisions:
            rprint(f"[yellow]No history found for {path}.[/yellow]")
            return
        table = Table(title=f"History of {path} ({len(revisions)})")
        table.add_column("Rev", justify="right", style="cyan")
        table.add_column("Change", justify="right")
        table.add_column("Date")
        table.add_column("User", style="green")
        table.add_column("Description", style="dim")
        for r in revisions:
            table.add_row(
                f"#{r.revision}",
                str(r.changelist),
                f"{r.timestamp:%Y-%m-%d %H:%M}",
                r.user,
                r.description or "(no description)",
            )
        rprint(table)


@app.command()
def diff(
    root: str = typer.Argument(..., help="Root stream path"),
    old: int = typer.Argument(..., help="Older revision number"),
    new: int = typer.Argument(..., help="Newer revision number"),
    stream: Annotated[
        str | None, typer.Option("--stream", "-s", help="Only compare this stream")
    ] = None,
) -> None:
    """Compare two revisions of ROOT's snapshot file."""
    cfg = _get_config()
    with _cli_errors(), _connected(cfg) as session:
        path = snapshot_file_path(root, cfg.history_storage_path)
        result = RevisionHistory(session.server).compare(path, old, new, stream=stream)
        _display_diff(result, f"#{min(old, new)} -> #{max(old, new)}")


# ---------------------------------------------------------------------------
# Commands that publish
# ---------------------------------------------------------------------------


@app.command("add-rule")
def add_rule_cmd(
    root: str = typer.Argument(..., help="Root stream path"),
    stream: str = typer.Argument(..., help="Stream that owns the new rule"),
    kind: RuleKind = typer.Argument(..., help="ignore or remap"),
    pattern: str = typer.Argument(..., help="Path pattern, relative to the stream"),
    target: Annotated[
        str | None, typer.Option("--target", "-t", help="Remap target (remap rules only)")
    ] = None,
    pending: Annotated[
        bool, typer.Option("--pending", help="Leave the snapshot in a pending changelist")
    ] = False,
    description: Annotated[
        str | None, typer.Option("--description", "-d", help="Changelist description")
    ] = None,
) -> None:
    """Add a rule to STREAM and publish it."""
    cfg = _get_config()
    with _cli_errors(), _connected(cfg) as session:
        _load(session, root)
        rule = session.add_rule(stream, kind, pattern, target)
        rprint(f"[bold]Adding[/bold] {rule.describe()} to {stream}")
        _display_publish_result(
            session.publish(stream, description=description, submit=not pending)
        )


@app.command("remove-rule")
def remove_rule_cmd(
    root: str = typer.Argument(..., help="Root stream path"),
    stream: str = typer.Argument(..., help="Stream that owns the rule"),
    kind: RuleKind = typer.Argument(..., help="ignore or remap"),
    pattern: str = typer.Argument(..., help="Pattern of the rule to remove"),
    pending: Annotated[
        bool, typer.Option("--pending", help="Leave the snapshot in a pending changelist")
    ] = False,
    description: Annotated[
        str | None, typer.Option("--description", "-d", help="Changelist description")
    ] = None,
) -> None:
    """Remove a local rule from STREAM and publish the change."""
    cfg = _get_config()
    with _cli_errors(), _connected(cfg) as session:
        _load(session, root)
        node = session.node(stream)
        wanted = path_key(normalize_rule_path(pattern, node.path))
        match = next(
            (r for r in node.local_rules if r.kind is kind and path_key(r.pattern) == wanted),
            None,
        )
        if match is None:
            rprint(f"[red]Error:[/red] No local {kind.value} rule '{pattern}' on {stream}")
            raise typer.Exit(1)
        session.delete_rule(stream, match)
        rprint(f"[bold]Removing[/bold] {match.describe()} from {stream}")
        _display_publish_result(
            session.publish(stream, description=description, submit=not pending)
        )


@app.command()
def restore(
    root: str = typer.Argument(..., help="Root stream path"),
    revision: int = typer.Argument(..., help="Snapshot revision to restore"),
    publish: Annotated[
        bool, typer.Option("--publish", help="Write the restored rules back to the server")
    ] = False,
    pending: Annotated[
        bool, typer.Option("--pending", help="With --publish, leave the changelist pending")
    ] = False,
) -> None:
    """Restore ROOT's rules (and parents) from a historical snapshot."""
    cfg = _get_config()
    with _cli_errors(), _connected(cfg) as session:
        _load(session, root)
        _display_diff(session.preview_restore(revision), f"Restore #{revision}")
        summary = session.restore(revision)
        rprint(
            f"Restored {summary.rules_restored} rule(s) across "
            f"{summary.streams_restored} stream(s), {summary.parents_restored} parent(s)."
        )
        if not publish:
            rprint("[yellow]Preview only.[/yellow] Use --publish to write it to the server.")
            return
        if not session.has_unsaved_changes:
            rprint("[green]Nothing to publish; the hierarchy already matches.[/green]")
            return
        root_path = session.hierarchy.root.path
        _display_publish_result(
            session.publish(
                root_path,
                description=f"Restore {root_path} to snapshot revision #{revision}",
                submit=not pending,
            )
        )


# ---------------------------------------------------------------------------
# Config commands
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    cfg = _get_config()
    rprint(Syntax(yaml.dump(cfg.model_dump(mode="json"), default_flow_style=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default streamledger.yaml in current directory."""
    target = Path(PROJECT_CONFIG)
    if target.exists() and not force:
        rprint("[yellow]streamledger.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")


if __name__ == "__main__":
    app()
