"""
Resumable File Transfer CLI

Usage:
    resumexfer serve                 # Run the server
    resumexfer upload FILE           # Upload (resumes partial uploads)
    resumexfer download NAME         # Download (resumes partial downloads)
    resumexfer push NAME             # Have the server push a file
    resumexfer config                # Show effective configuration
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.logging import RichHandler

from .config import Config, load_config
from .server import FileTransferServer
from .transfer import TransferClient, TransferFailed

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    log_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def _progress_bar() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    )


def _client(config: Config, host: Optional[str], port: Optional[int]) -> TransferClient:
    return TransferClient(
        host or _client_host(config.host),
        port or config.port,
        chunk_size=config.chunk_size,
        timeout=config.timeout,
        max_frame_size=config.max_frame_size,
    )


def _client_host(host: str) -> str:
    # A wildcard bind address isn't something to connect to
    return '127.0.0.1' if host in ('0.0.0.0', '') else host


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(path_type=Path),
              default=None, help='JSON config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """Resumable file transfer server and client."""
    config = load_config(config_path)
    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default=None, help='Bind address')
@click.option('--port', type=int, default=None, help='TCP port')
@click.option('--storage-dir', type=click.Path(path_type=Path), default=None,
              help='Directory for stored files')
@click.pass_context
def serve(ctx, host, port, storage_dir):
    """Run the transfer server."""
    config = ctx.obj['config']
    if host:
        config.host = host
    if port:
        config.port = port
    if storage_dir:
        config.storage_dir = storage_dir

    async def run():
        server = FileTransferServer(config)

        try:
            await server.start()

            console.print(Panel.fit(
                f"[bold green]Transfer Server Started[/bold green]\n\n"
                f"Address: [yellow]{config.host}:{server.port}[/yellow]\n"
                f"Storage: [blue]{config.storage_dir}[/blue]\n"
                f"Chunk size: [yellow]{format_size(config.chunk_size)}[/yellow]",
                title="Server Info"
            ))
            console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

            while True:
                await asyncio.sleep(1)
        finally:
            await server.stop()
            console.print("[green]Server stopped[/green]")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--name', '-n', default=None, help='File name on the server')
@click.option('--host', default=None, help='Server address')
@click.option('--port', type=int, default=None, help='Server port')
@click.pass_context
def upload(ctx, file_path, name, host, port):
    """Upload a file, resuming a partial upload."""
    config = ctx.obj['config']

    async def run():
        with _progress_bar() as progress:
            task = progress.add_task(f"Uploading {file_path.name}...", total=100)

            def update_progress(p):
                progress.update(task, completed=p.progress_percent)

            async with _client(config, host, port) as client:
                length = await client.upload_file(file_path, name, update_progress)

            progress.update(task, completed=100, description="Done!")
        return length

    try:
        length = asyncio.run(run())
    except (TransferFailed, OSError, asyncio.TimeoutError) as e:
        console.print(f"\n[red]✗ Upload failed: {e}[/red]")
        raise SystemExit(1)

    console.print(f"\n[green]✓ Uploaded {name or file_path.name} ({format_size(length)})[/green]")


@cli.command()
@click.argument('name')
@click.option('--output', '-o', type=click.Path(path_type=Path), help='Output path')
@click.option('--host', default=None, help='Server address')
@click.option('--port', type=int, default=None, help='Server port')
@click.pass_context
def download(ctx, name, output, host, port):
    """Download a file, resuming a partial download."""
    config = ctx.obj['config']
    output_path = output or Path(name)

    async def run():
        with _progress_bar() as progress:
            task = progress.add_task(f"Downloading {name}...", total=100)

            def update_progress(p):
                progress.update(task, completed=p.progress_percent)

            async with _client(config, host, port) as client:
                result = await client.download_file(name, output_path, update_progress)

            progress.update(task, completed=100, description="Done!")
        return result

    try:
        result = asyncio.run(run())
    except (TransferFailed, OSError, asyncio.TimeoutError) as e:
        console.print(f"\n[red]✗ Download failed: {e}[/red]")
        raise SystemExit(1)

    console.print(f"\n[green]✓ Downloaded to: {result}[/green]")


@cli.command()
@click.argument('name')
@click.option('--output', '-o', type=click.Path(path_type=Path), help='Output path')
@click.option('--host', default=None, help='Server address')
@click.option('--port', type=int, default=None, help='Server port')
@click.pass_context
def push(ctx, name, output, host, port):
    """Have the server push a whole file."""
    config = ctx.obj['config']
    output_path = output or Path(name)

    async def run():
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task(f"Receiving {name}...", total=None)

            def update_progress(p):
                progress.update(
                    task,
                    description=f"Receiving {name}... ({format_size(p.transferred_bytes)})"
                )

            async with _client(config, host, port) as client:
                result = await client.push_file(name, output_path, update_progress)

            progress.update(task, description="Done!")
        return result

    try:
        result = asyncio.run(run())
    except (TransferFailed, OSError, asyncio.TimeoutError) as e:
        console.print(f"\n[red]✗ Push failed: {e}[/red]")
        raise SystemExit(1)

    console.print(f"\n[green]✓ Received: {result}[/green]")


@cli.command('config')
@click.pass_context
def show_config(ctx):
    """Show the effective configuration."""
    config = ctx.obj['config']
    console.print_json(json.dumps(config.to_dict()))


def main():
    cli()


if __name__ == '__main__':
    main()
