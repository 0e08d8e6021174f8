"""CLI commands for the media registry.

Provides 3 commands:
  - ingest: Register a local file or download a URL/DOI/handle and print the entry
  - validate-config: Validate a configuration file
  - schema: Print the configuration JSON schema
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from Switchboard.MediaRegistry.config.loader import (
    export_config_schema,
    load_config,
    validate_config_file,
)
from Switchboard.MediaRegistry.errors import MediaRegistryError, describe_error
from Switchboard.MediaRegistry.models import Profile
from Switchboard.MediaRegistry.registry import MediaRegistry

logger = logging.getLogger(__name__)
app = typer.Typer(help="Media registry commands")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def ingest(
    source: str = typer.Argument(..., help="Local file path, URL, DOI or handle"),
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="Config file path (YAML/JSON)"
    ),
    mediatype: Optional[str] = typer.Option(
        None, "--mediatype", help="Use this media type instead of profiling"
    ),
    keep: bool = typer.Option(
        False, "--keep/--discard", help="Keep the stored blob after printing"
    ),
) -> None:
    """Ingest one file or link and print the resulting entry as JSON."""
    config = load_config(path=config_path)
    profile = Profile(mediatype) if mediatype else None

    registry = MediaRegistry.from_config(config, start_cleanup=False)
    try:
        path = Path(source)
        if path.is_file():
            with path.open("rb") as stream:
                entry = registry.add_file(path.name, stream, profile)
        else:
            entry = registry.add_by_url(source, profile)
        data = entry.to_dict()
        preview = entry.preview()
        if preview.content:
            data["content"] = preview.content
            if preview.is_incomplete:
                data["contentIsIncomplete"] = True
        typer.echo(json.dumps(data, indent=2))
    except MediaRegistryError as e:
        typer.echo(f"✗ Error: {describe_error(e)}", err=True)
        raise typer.Exit(1)
    finally:
        if not keep:
            registry.close()
        registry.client.close()


@app.command("validate-config")
def validate_config(
    config_path: str = typer.Argument(..., help="Config file path (YAML/JSON)"),
) -> None:
    """Validate a configuration file."""
    try:
        validate_config_file(config_path)
    except ValueError as e:
        typer.echo(f"✗ Invalid config: {e}", err=True)
        raise typer.Exit(1)
    typer.echo(f"✓ {config_path} is valid")


@app.command()
def schema() -> None:
    """Print the configuration JSON schema."""
    typer.echo(json.dumps(export_config_schema(), indent=2))


if __name__ == "__main__":
    app()
