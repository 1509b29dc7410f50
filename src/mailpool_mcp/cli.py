"""Command-line interface for the Mailpool MCP server.

Provides commands for configuration validation, mailbox operations,
classification scans and running the MCP server (stdio or HTTP).

Usage:
    python -m mailpool_mcp validate-config
    python -m mailpool_mcp list ada@example.com --tags "interested AND NOT bounced"
    python -m mailpool_mcp classify --account ada@example.com
    python -m mailpool_mcp mcp
    python -m mailpool_mcp serve
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from mailpool_mcp.config import validate_config_file
from mailpool_mcp.core.errors import ConfigLoadError, ConfigValidationError, MailpoolError
from mailpool_mcp.core.logging import configure_logging

if TYPE_CHECKING:
    from mailpool_mcp.config_schema import AppConfig
    from mailpool_mcp.engine.tag_filter import FilterExpression
    from mailpool_mcp.service import MailboxService

console = Console()

CONFIG_OPTION_HELP = "Path to config file (default: config/config.yaml, optional)"


def _load_config(ctx: click.Context) -> AppConfig:
    """Load config for a command, exiting with an actionable message on failure."""
    from mailpool_mcp.config import load_config

    try:
        return load_config(ctx.obj.get("config_path"))
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Copy config/config.yaml.example to config/config.yaml or pass --config."
        )
        sys.exit(1)


def _init_service(ctx: click.Context) -> MailboxService:
    from mailpool_mcp.service import MailboxService

    config = _load_config(ctx)
    try:
        return MailboxService.from_config(config)
    except MailpoolError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def _fail(e: Exception) -> NoReturn:
    console.print(f"\n[red]Error:[/red] {e}")
    sys.exit(1)


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help=CONFIG_OPTION_HELP,
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config_path: Path | None) -> None:
    """Mailpool MCP - mailbox tools and reply classification for agents."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    log_level = "DEBUG" if debug else "INFO"
    # Human-readable output for the CLI, JSON for the server
    configure_logging(log_level=log_level, json_output=False)


@cli.command("validate-config")
@click.pass_context
def validate_config(ctx: click.Context) -> None:
    """Validate the configuration file and report which secrets are set."""
    config_path = ctx.obj.get("config_path")
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("accounts")
@click.pass_context
def accounts(ctx: click.Context) -> None:
    """List the mailboxes in the Mailpool directory."""
    service = _init_service(ctx)
    try:
        mailboxes = service.list_accounts()
    except MailpoolError as e:
        _fail(e)

    table = Table(title=f"Mailboxes ({len(mailboxes)})")
    table.add_column("ID", justify="right")
    table.add_column("Email", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Domain")
    for mailbox in mailboxes:
        name = f"{mailbox.first_name} {mailbox.last_name}".strip()
        table.add_row(str(mailbox.id), mailbox.email, name, mailbox.status, mailbox.domain)
    console.print(table)


@cli.command("list")
@click.argument("email")
@click.option("--folder", default="INBOX", help="Folder name or alias (INBOX, SENT)")
@click.option("--limit", default=None, type=click.IntRange(min=1), help="Page size")
@click.option("--page", default=1, type=int, help="1-based page number")
@click.option("--tags", default=None, help='Tag filter, e.g. "interested AND NOT bounced"')
@click.pass_context
def list_messages(
    ctx: click.Context,
    email: str,
    folder: str,
    limit: int | None,
    page: int,
    tags: str | None,
) -> None:
    """List messages of a mailbox folder, newest first."""
    service = _init_service(ctx)
    try:
        result = service.list_messages(email, folder, limit=limit, page=page, tag_filter=tags)
    except MailpoolError as e:
        _fail(e)

    table = Table(
        title=f"{email} {folder} (page {result.page}/{result.total_pages}, {result.total} total)"
    )
    table.add_column("UID", justify="right")
    table.add_column("Date")
    table.add_column("From", style="cyan")
    table.add_column("Subject")
    table.add_column("Tags", style="green")
    for message in result.messages:
        table.add_row(
            str(message.uid),
            message.date.strftime("%Y-%m-%d %H:%M") if message.date else "",
            message.sender,
            message.subject,
            " ".join(sorted(message.flags)),
        )
    console.print(table)


@cli.command("tag")
@click.argument("email")
@click.argument("uid", type=int)
@click.argument("tags", nargs=-1, required=True)
@click.option("--folder", default="INBOX", help="Folder name or alias (INBOX, SENT)")
@click.pass_context
def tag(ctx: click.Context, email: str, uid: int, tags: tuple[str, ...], folder: str) -> None:
    """Add tags to a message."""
    service = _init_service(ctx)
    try:
        resolved = service.tag_message(email, folder, uid, list(tags))
    except (MailpoolError, ValueError) as e:
        _fail(e)
    console.print(f"[green]✓[/green] Tagged {resolved}/{uid}: {', '.join(tags)}")


@cli.command("untag")
@click.argument("email")
@click.argument("uid", type=int)
@click.argument("tags", nargs=-1, required=True)
@click.option("--folder", default="INBOX", help="Folder name or alias (INBOX, SENT)")
@click.pass_context
def untag(ctx: click.Context, email: str, uid: int, tags: tuple[str, ...], folder: str) -> None:
    """Remove tags from a message."""
    service = _init_service(ctx)
    try:
        resolved = service.untag_message(email, folder, uid, list(tags))
    except (MailpoolError, ValueError) as e:
        _fail(e)
    console.print(f"[green]✓[/green] Untagged {resolved}/{uid}: {', '.join(tags)}")


@cli.command("send")
@click.argument("email")
@click.option("--to", "to", multiple=True, required=True, help="Recipient (repeatable)")
@click.option("--subject", required=True, help="Subject line")
@click.option("--text", default=None, help="Plain-text body")
@click.option("--html", default=None, help="HTML body")
@click.option("--cc", multiple=True, help="Cc recipient (repeatable)")
@click.option("--bcc", multiple=True, help="Bcc recipient (repeatable)")
@click.pass_context
def send(
    ctx: click.Context,
    email: str,
    to: tuple[str, ...],
    subject: str,
    text: str | None,
    html: str | None,
    cc: tuple[str, ...],
    bcc: tuple[str, ...],
) -> None:
    """Send an email from a mailbox."""
    from mailpool_mcp.mail.models import SendRequest

    service = _init_service(ctx)
    request = SendRequest(
        to=list(to), subject=subject, text=text, html=html, cc=list(cc), bcc=list(bcc)
    )
    try:
        result = service.send(email, request)
    except (MailpoolError, ValueError) as e:
        _fail(e)

    if result.accepted:
        accepted = ", ".join(result.accepted)
        console.print(f"[green]✓[/green] Sent {result.message_id} to {accepted}")
    if result.rejected:
        console.print(f"[yellow]Rejected:[/yellow] {', '.join(result.rejected)}")
        if not result.accepted:
            sys.exit(1)


@cli.command("classify")
@click.option("--account", default=None, help="Only scan this mailbox address")
@click.pass_context
def classify(ctx: click.Context, account: str | None) -> None:
    """Classify unclassified replies and tag them in the mailboxes."""
    service = _init_service(ctx)
    try:
        report = asyncio.run(service.classify_replies(account))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except MailpoolError as e:
        _fail(e)

    from mailpool_mcp.classifier.categories import ReplyCategory
    from mailpool_mcp.engine.classify_scan import summarize

    table = Table(title=f"Classification scan {report.scan_id[:8]}... ({report.duration_ms}ms)")
    table.add_column("Account", style="cyan")
    table.add_column("Total", justify="right")
    for category in ReplyCategory:
        table.add_column(category.value, justify="right")
    table.add_column("Error", style="red")
    for result in report.results:
        table.add_row(
            result.account,
            str(result.total),
            *(str(result.counts[category]) for category in ReplyCategory),
            result.error or "",
        )
    if len(report.results) > 1:
        totals = summarize(report.results)
        table.add_row(
            "[bold]All accounts[/bold]",
            str(totals["total"]),
            *(str(totals[category.value]) for category in ReplyCategory),
            "",
        )
    console.print(table)

    if report.failed_accounts:
        sys.exit(1)


def _render_filter(expression: FilterExpression, tree: Tree) -> None:
    from mailpool_mcp.engine.tag_filter import And, Not, Or, Tag

    if isinstance(expression, Tag):
        tree.add(f"[green]{expression.name}[/green]")
    elif isinstance(expression, Not):
        _render_filter(expression.operand, tree.add("[bold]NOT[/bold]"))
    elif isinstance(expression, And | Or):
        branch = tree.add(f"[bold]{type(expression).__name__.upper()}[/bold]")
        _render_filter(expression.left, branch)
        _render_filter(expression.right, branch)


@cli.command("filter-check")
@click.argument("expression")
@click.option("--flags", default=None, help="Comma-separated flags to evaluate against")
def filter_check(expression: str, flags: str | None) -> None:
    """Parse a tag filter and show its structure (no mailbox access)."""
    from mailpool_mcp.core.errors import FilterSyntaxError
    from mailpool_mcp.engine.tag_filter import evaluate, parse_filter

    try:
        parsed = parse_filter(expression)
    except FilterSyntaxError as e:
        _fail(e)

    tree = Tree(f"[cyan]{parsed}[/cyan]")
    _render_filter(parsed, tree)
    console.print(tree)

    if flags is not None:
        flag_set = {f.strip() for f in flags.split(",") if f.strip()}
        matched = evaluate(parsed, flag_set)
        verdict = "[green]matches[/green]" if matched else "[red]does not match[/red]"
        console.print(f"Flags: {', '.join(sorted(flag_set)) or '(none)'} {verdict}")


@cli.command("mcp")
@click.pass_context
def mcp_stdio(ctx: click.Context) -> None:
    """Run the MCP server over stdio."""
    from mailpool_mcp.server.tools import create_mcp_server
    from mailpool_mcp.service import MailboxService

    config = _load_config(ctx)
    # stdout carries the protocol; logs go to stderr
    configure_logging(log_level=config.server.log_level, json_output=False)

    server = create_mcp_server(lambda: MailboxService.from_config(config))
    server.run(transport="stdio")


@cli.command("serve")
@click.option("--host", default=None, help="Host to bind to (default: server.host)")
@click.option("--port", default=None, type=int, help="Port to bind to (default: server.port)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the HTTP server (MCP at /mcp, JSON API at /api)."""
    import uvicorn

    from mailpool_mcp.web.app import create_app

    config = _load_config(ctx)
    host = host or config.server.host
    port = port or config.server.port

    if host == "0.0.0.0" and not config.server.api_key:  # noqa: S104
        console.print(
            "[yellow]Warning:[/yellow] Binding to 0.0.0.0 without API_KEY exposes the "
            "mailboxes to the network. Set API_KEY or use 127.0.0.1."
        )

    configure_logging(log_level=config.server.log_level, json_output=True)

    app = create_app(config)
    console.print(f"Starting server on [cyan]http://{host}:{port}[/cyan]")
    uvicorn.run(app, host=host, port=port, log_level=config.server.log_level.lower())


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
