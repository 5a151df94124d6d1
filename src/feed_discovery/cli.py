from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer

from feed_discovery.config import load_config
from feed_discovery.discovery.orchestrator import FeedDiscoveryOrchestrator
from feed_discovery.reporting.logging import jsonl_logger, null_logger
from feed_discovery.utils import load_env_file

app = typer.Typer(help="Feed discovery CLI")


@app.callback()
def main() -> None:
    """Find RSS, Atom and JSON feeds published by websites."""
    return None


@app.command()
def discover(
    urls: List[str] = typer.Argument(..., help="Website URLs to inspect."),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Per-request timeout in seconds (overrides config)."
    ),
    config: Path = typer.Option(
        Path("config.yaml"), "--config", help="Path to config.yaml."
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Append diagnostic events as JSON lines."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", help="Echo diagnostic events to stderr."
    ),
) -> None:
    """Discover feeds for one or more websites and print the results as JSON."""
    load_env_file(Path(".env"))
    try:
        app_config = load_config(config)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc

    log = null_logger
    if verbose or log_file is not None:
        log = jsonl_logger(log_path=log_file, echo=verbose)

    orchestrator = FeedDiscoveryOrchestrator.from_config(app_config, log=log)
    results = asyncio.run(orchestrator.discover_many(urls, timeout=timeout))

    payload = [result.to_dict() for result in results]
    typer.echo(json.dumps(payload[0] if len(payload) == 1 else payload, indent=2))

    for result in results:
        if not result.discovered_feeds:
            for suggestion in result.suggestions:
                typer.secho(f"{result.original_url}: {suggestion}", fg=typer.colors.YELLOW, err=True)


@app.command()
def relays(
    config: Path = typer.Option(
        Path("config.yaml"), "--config", help="Path to config.yaml."
    ),
) -> None:
    """List the relay chain in the order it is tried."""
    app_config = load_config(config)
    for relay in app_config.relays:
        extras = []
        if relay.unwrap:
            extras.append(f"unwrap={relay.unwrap}")
        if relay.timeout:
            extras.append(f"timeout={relay.timeout:g}s")
        if relay.api_key:
            extras.append("api_key=set")
        suffix = f" ({', '.join(extras)})" if extras else ""
        typer.echo(f"{relay.priority:>3}  {relay.name}: {relay.template}{suffix}")


if __name__ == "__main__":
    app()
