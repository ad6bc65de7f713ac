"""
Command line interface for comfylink.

Talks to the server named by the COMFYLINK_* environment variables (see
``comfylink.client.config``).
"""

import asyncio
import json
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import print as rprint

from .client import ComfyClient, HistoryRecord, JobRecord, WorkflowGraph, resolve_server_config
from .utils.errors import CLIError, ComfyLinkError, cli_error_handler, handle_exception
from .utils.logging import LogFormat, LoggerFactory, get_cli_logger

logger = get_cli_logger()

app = typer.Typer(
    name="comfylink",
    help="Submit workflows to a ComfyUI-style server and inspect its history",
    no_args_is_help=True,
)

console = Console()


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


def _make_client() -> ComfyClient:
    return ComfyClient(resolve_server_config())


@app.callback()
def main_callback(
    log_level: LogLevel = typer.Option(
        LogLevel.WARNING, "--log-level", case_sensitive=False, help="Log level for diagnostics on stderr"
    ),
    log_format: LogFormat = typer.Option(LogFormat.CONSOLE, "--log-format", case_sensitive=False),
):
    LoggerFactory.configure_logging(level=log_level.value, format_type=log_format.value)


@app.command("stats")
def stats_command():
    """
    Show server system information and devices.

    Example:
        comfylink stats
    """

    async def _run():
        async with _make_client() as client:
            return await client.get_system_stats()

    try:
        stats = asyncio.run(_run())
    except ComfyLinkError as e:
        handle_exception("read system stats", e)

    console.print(Panel.fit("[bold cyan]Server System Stats[/bold cyan]", border_style="cyan"))
    for key, value in stats.system.items():
        rprint(f"  {key}: [cyan]{value}[/cyan]")

    if stats.devices:
        table = Table(title="Devices")
        table.add_column("Name")
        table.add_column("Type")
        table.add_column("VRAM free / total")
        for device in stats.devices:
            table.add_row(
                str(device.get("name", "")),
                str(device.get("type", "")),
                f"{device.get('vram_free', '?')} / {device.get('vram_total', '?')}",
            )
        console.print(table)


@app.command("history")
def history_command(
    ordered: bool = typer.Option(True, "--ordered/--unordered", help="Sort by queue ordinal"),
    max_items: Optional[int] = typer.Option(None, "--max-items", help="Limit the entries fetched"),
):
    """
    List past jobs with their outputs.

    Example:
        comfylink history
        comfylink history --max-items 20
    """

    async def _run():
        client = _make_client()
        try:
            if ordered:
                return await client.fetch_history_ordered(max_items=max_items)
            return list((await client.fetch_history(max_items=max_items)).values())
        finally:
            await client.close()

    try:
        records = asyncio.run(_run())
    except ComfyLinkError as e:
        handle_exception("fetch history", e)

    if not records:
        rprint("[yellow]No jobs in history[/yellow]")
        return

    console.print(_history_table(records))


def _history_table(records: list[HistoryRecord]) -> Table:
    table = Table(title="Job History")
    table.add_column("#", justify="right")
    table.add_column("Job ID")
    table.add_column("Nodes", justify="right")
    table.add_column("Outputs")
    for record in records:
        if record.graph is None:
            nodes = "[red]unreadable[/red]"
        else:
            nodes = str(len(record.graph)) if record.graph.nodes or record.graph.ui_workflow is None else "UI only"
        outputs = ", ".join(output.filename for output in record.images) or "-"
        table.add_row(str(record.ordinal), record.job_id, nodes, outputs)
    return table


@app.command("submit")
def submit_command(
    workflow: Path = typer.Argument(..., help="Workflow JSON (API format or comfylink document)"),
    wait: Optional[float] = typer.Option(
        None, "--wait", help="Stream progress until the job finishes or SECONDS elapse"
    ),
):
    """
    Queue a workflow.

    Example:
        comfylink submit workflow_api.json
        comfylink submit workflow_api.json --wait 300
    """
    cli_error_handler.validate_path_exists(workflow, "Workflow file")

    try:
        graph = WorkflowGraph.from_json(workflow.read_text(encoding="utf-8"))
    except ComfyLinkError as e:
        handle_exception("read workflow", e)

    if graph.is_empty:
        cli_error_handler.handle_error(
            CLIError(
                f"{workflow} has no executable nodes",
                operation="read_workflow",
                user_message="Workflow has no executable nodes; save it in API format and retry",
            ),
            "read workflow",
        )

    async def _run():
        async with _make_client() as client:
            job = await client.submit(graph)
            rprint(f"[green]✓[/green] Queued job [cyan]{job.job_id}[/cyan] (number {job.number})")
            if wait is not None:
                await asyncio.wait_for(_stream(job), timeout=wait)
            job.release()

    try:
        asyncio.run(_run())
    except asyncio.TimeoutError:
        rprint(f"[yellow]Stopped waiting after {wait} seconds[/yellow]")
        raise typer.Exit(code=2)
    except ComfyLinkError as e:
        handle_exception("submit workflow", e)


async def _stream(job: JobRecord) -> None:
    async for notification in job.notifications():
        if notification.kind == "progress":
            value, maximum = notification.data.get("value"), notification.data.get("max")
            rprint(f"  node {notification.node}: {value}/{maximum}")
        elif notification.kind == "executed":
            output = notification.data.get("output") or {}
            images = [image.get("filename") for image in output.get("images", [])]
            rprint(f"  node {notification.node} produced {', '.join(images) or 'output'}")
        elif notification.kind == "execution_error":
            rprint(f"[red]✗ {notification.data.get('exception_message', 'execution failed')}[/red]")
        elif notification.is_terminal:
            rprint(f"[green]✓[/green] Job {job.job_id} finished ({notification.kind})")


@app.command("interrupt")
def interrupt_command():
    """Interrupt the job currently executing."""

    async def _run():
        client = _make_client()
        try:
            await client.interrupt()
        finally:
            await client.close()

    try:
        asyncio.run(_run())
    except ComfyLinkError as e:
        handle_exception("interrupt", e)
    rprint("[green]✓[/green] Interrupt sent")


@app.command("clear-history")
def clear_history_command(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Delete every entry in the server's history."""
    if not yes and not typer.confirm("Clear the entire server history?"):
        raise typer.Exit(code=1)

    async def _run():
        client = _make_client()
        try:
            await client.clear_history()
        finally:
            await client.close()

    try:
        asyncio.run(_run())
    except ComfyLinkError as e:
        handle_exception("clear history", e)
    rprint("[green]✓[/green] History cleared")


@app.command("delete-history")
def delete_history_command(job_id: str = typer.Argument(..., help="Job to remove")):
    """Delete one history entry."""

    async def _run():
        client = _make_client()
        try:
            await client.delete_history_item(job_id)
        finally:
            await client.close()

    try:
        asyncio.run(_run())
    except ComfyLinkError as e:
        handle_exception("delete history entry", e)
    rprint(f"[green]✓[/green] Deleted [cyan]{job_id}[/cyan]")


@app.command("export")
def export_command(
    job_id: str = typer.Argument(..., help="Job whose workflow to export"),
    output: Path = typer.Option(Path("workflow_api.json"), "--output", "-o"),
):
    """Write a past job's workflow back out: API format when known, else the frontend workflow."""

    async def _run():
        client = _make_client()
        try:
            return await client.fetch_history_item(job_id)
        finally:
            await client.close()

    try:
        record = asyncio.run(_run())
    except ComfyLinkError as e:
        handle_exception("export workflow", e)

    graph = record.graph if record is not None else None
    if graph is not None and not graph.is_empty:
        exported = graph.to_prompt()
    elif graph is not None and graph.ui_workflow is not None:
        exported = graph.ui_workflow
    else:
        rprint(f"[yellow]No workflow stored for {job_id}[/yellow]")
        raise typer.Exit(code=1)

    output.write_text(json.dumps(exported, indent=2), encoding="utf-8")
    logger.info("Exported workflow", extra_context={"job_id": job_id, "path": str(output)})
    rprint(f"[green]✓[/green] Wrote [cyan]{output}[/cyan]")


def main() -> None:
    """Entry point for CLI script."""
    app()
