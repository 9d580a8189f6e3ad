"""Command line entry point for the restreamer."""

from __future__ import annotations

import click

from .config import load_config
from .media import MediaLibrary
from .server import run_server


@click.group()
@click.version_option(package_name="restreamer")
def cli():
    """Local restreaming control server."""


@cli.command()
@click.option("--host", default=None, help="Interface to bind (default from RESTREAMER_HOST)")
@click.option("--port", default=None, type=int, help="Port to bind (default from RESTREAMER_PORT)")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Set logging level",
)
def serve(host, port, log_level):
    """Start the control server."""
    config = load_config()
    if host:
        config.server.host = host
    if port:
        config.server.port = port
    run_server(config, log_level=log_level)


@cli.command()
def videos():
    """List the media files available for streaming."""
    library = MediaLibrary(load_config().media)
    entries = library.list_videos()
    if not entries:
        click.echo(f"No videos in {library.root}")
        return
    for entry in entries:
        click.echo(f"{entry['name']}\t{entry['size']}\t{entry['lastModified']}")


if __name__ == "__main__":
    cli()
