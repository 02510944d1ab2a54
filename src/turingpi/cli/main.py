"""Command-line wrapper around the image pipeline."""

import asyncio
from pathlib import Path
from typing import Any, Callable, List, Optional

import typer
from rich.console import Console

from turingpi.containers.registry import get_registry
from turingpi.errors import OperationCancelled, PipelineError, TuringPiError
from turingpi.imageops.pipeline import prepare_image
from turingpi.models.config import TuringPiConfig
from turingpi.models.job import PreparationJob
from turingpi.utils.logging import setup_logging


app = typer.Typer(
    name="tpi-prep",
    help="Prepare per-node disk images for a Turing Pi cluster board",
    add_completion=False,
)

console = Console()


def _run_cli_command(handler: Callable[..., Any], **kwargs: Any) -> Any:
    """Run a handler, turning turingpi errors into exit code 1."""
    try:
        return handler(**kwargs)
    except OperationCancelled as e:
        console.print(f"[yellow]Cancelled:[/yellow] {e}")
        get_registry().reraise_pending()
        raise typer.Exit(1) from e
    except PipelineError as e:
        console.print(f"[red]Error:[/red] {e}")
        for error in e.release_errors:
            console.print(f"[yellow]  cleanup:[/yellow] {error}")
        raise typer.Exit(1) from e
    except TuringPiError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _prepare(job: PreparationJob, config: TuringPiConfig) -> Path:
    with console.status(f"Preparing {job.artefact_name}..."):
        return asyncio.run(prepare_image(job, config=config))


@app.command("prepare")
def prepare_command(
    source: Path = typer.Argument(..., help="Compressed source image (.xz)"),
    node: int = typer.Option(..., "--node", "-n", help="Node slot (1-4)"),
    ip: str = typer.Option(..., "--ip", help="Static IPv4 address"),
    gateway: str = typer.Option(..., "--gateway", "-g", help="IPv4 gateway"),
    prefix: int = typer.Option(24, "--prefix", "-p", help="Prefix length (8, 16 or 24)"),
    dns: List[str] = typer.Option(["8.8.8.8"], "--dns", help="DNS server (repeatable or comma separated)"),
    hostname: Optional[str] = typer.Option(None, "--hostname", help="Defaults to node<N>"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Output directory"),
    keep_intermediate: bool = typer.Option(False, "--keep-intermediate", help="Keep the temp workspace"),
    verify: bool = typer.Option(False, "--verify", help="Verify written files and the artefact"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
):
    """Prepare one node image and print its path."""
    config = TuringPiConfig.from_env()
    if log_level:
        config.log_level = log_level.upper()
    setup_logging(config.log_level)

    def handler() -> Path:
        job = PreparationJob.parse({
            "source_image": source,
            "node": node,
            "ip_address": ip,
            "prefix_length": prefix,
            "gateway": gateway,
            "dns": dns,
            "hostname": hostname,
            "output_dir": output_dir,
            "keep_intermediate": keep_intermediate,
            "verify_checksums": verify,
        })
        return _prepare(job, config)

    result = _run_cli_command(handler)
    console.print(f"[green]Image ready:[/green] {result}")


@app.command("sweep")
def sweep_command():
    """Destroy every worker container tracked by this process."""
    setup_logging(TuringPiConfig.from_env().log_level)
    count = get_registry().sweep()
    console.print(f"Swept {count} container(s)")


def main():
    """Main entry point for CLI."""
    app()
