"""
CLI interface for AI Vision Guard.

Provides command-line access to all tool functionality.
"""

import asyncio
import logging
import sqlite3
import sys
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from ai_vision_guard.config.loader import AppConfig, load_config, resolve_auth_key
from ai_vision_guard.core.dedup import (
    ContentAddressedDedupStore,
    compute_file_hash,
    normalize_hash,
)
from ai_vision_guard.core.errors import VisionGuardError
from ai_vision_guard.core.subjects import Subject
from ai_vision_guard.sdk.service import ImageAnalysisService
from ai_vision_guard.sdk.vision_client import VisionChatClient
from ai_vision_guard.storage.repository import ContentRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _get_config(ctx: typer.Context) -> AppConfig:
    return ctx.obj["config"]


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    ),
):
    """AI Vision Guard CLI."""
    _configure_logging(verbose)
    try:
        ctx.obj = {"config": load_config(config_path)}
    except Exception as e:
        _fail(f"Invalid configuration: {e}")
    if ctx.invoked_subcommand is None:
        console.print("AI Vision Guard - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the content database."""
    db_path = _get_config(ctx).storage.db_path
    try:
        initialize_schema(db_path)
        console.print(f"[green]✓[/] Database initialized successfully ({db_path})")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("hash")
def hash_file(file: str = typer.Argument(..., help="File to fingerprint")):
    """Print the SHA-256 content digest of a file."""
    try:
        console.print(compute_file_hash(file))
    except FileNotFoundError as e:
        _fail(str(e))


@app.command()
def ask(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Prompt text"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model identifier"),
    temperature: float = typer.Option(0.7, "--temperature", "-t", help="Sampling temperature"),
    max_tokens: int = typer.Option(1000, "--max-tokens", help="Maximum tokens to generate"),
):
    """Send a prompt to the model and print the answer."""
    config = _get_config(ctx)

    async def _run() -> str:
        async with await VisionChatClient.create(config, resolve_auth_key()) as client:
            return await client.send_prompt(prompt, model, temperature, max_tokens)

    try:
        answer = asyncio.run(_run())
    except (VisionGuardError, ValueError) as e:
        _fail(str(e))
    console.print(answer)


@app.command()
def analyze(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="URL of the image to analyze"),
):
    """Analyze an image, reusing the stored result for known content."""
    config = _get_config(ctx)

    async def _run():
        initialize_schema(config.storage.db_path)
        store = ContentAddressedDedupStore(ContentRepository(config.storage.db_path))
        async with VisionChatClient(config, resolve_auth_key()) as client:
            service = ImageAnalysisService(client, store)
            try:
                return await service.analyze_image(url)
            finally:
                await service.aclose()

    try:
        result = asyncio.run(_run())
    except (VisionGuardError, ValueError) as e:
        _fail(str(e))

    status = "[yellow]cached[/]" if result.cached else "[green]new[/]"
    console.print(f"\n[bold]Record:[/bold] {result.record.id} ({status})")
    console.print(f"Hash: {result.record.content_hash}")
    _display_subjects(result.subjects)


@app.command()
def materials(
    ctx: typer.Context,
    names: List[str] = typer.Argument(..., help="Object names"),
    record_id: Optional[str] = typer.Option(
        None, "--record", "-r", help="Stored record the objects were recognised in"
    ),
):
    """Ask which materials the given objects are made of."""
    config = _get_config(ctx)

    async def _run():
        store = None
        if record_id is not None:
            initialize_schema(config.storage.db_path)
            store = ContentAddressedDedupStore(ContentRepository(config.storage.db_path))
        async with VisionChatClient(config, resolve_auth_key()) as client:
            service = ImageAnalysisService(client, store)
            try:
                return await service.analyze_subjects(names, record_id)
            finally:
                await service.aclose()

    try:
        subjects = asyncio.run(_run())
    except (VisionGuardError, ValueError) as e:
        _fail(str(e))
    _display_subjects(subjects)


@app.command()
def show(
    ctx: typer.Context,
    content_hash: str = typer.Argument(..., help="Content digest to look up"),
):
    """Show the stored record for a content digest."""
    config = _get_config(ctx)
    try:
        record = ContentRepository(config.storage.db_path).find_by_hash(normalize_hash(content_hash))
    except ValueError as e:
        _fail(str(e))
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            _fail("Database is not initialized. Run `ai-vision-guard init` first.")
        raise

    if record is None:
        console.print(f"[yellow]No record found for[/] {content_hash}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Record:[/bold] {record.id}")
    console.print(f"Source: {record.source_url}")
    console.print(f"File: {record.file_name} ({record.file_id or 'not uploaded'})")
    console.print(f"Stored: {record.created_at.isoformat()}")
    _display_subjects(record.subjects)


def _display_subjects(subjects: Tuple[Subject, ...]) -> None:
    """Display subjects and materials as a table."""
    if not subjects:
        console.print("\n[dim]No subjects recognised.[/]")
        return

    table = Table(title="Subjects")
    table.add_column("Object", style="bold")
    table.add_column("Materials")
    for subject in subjects:
        table.add_row(subject.name, subject.summary() or "-")
    console.print(table)


if __name__ == "__main__":
    app()
