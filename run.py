"""Entry-point for the media wall service."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from mediawall.bootstrap import BootstrapError, initialize_app
from mediawall.config import AppConfig
from mediawall.logging_utils import (
    DEFAULT_LOG_FORMAT,
    configure_logging,
    get_log_file_path,
    resolve_log_level,
)
from mediawall.services.corpus import ImplementedWorkCorpus
from mediawall.services.ledger import LikesLedger
from mediawall.services.resolver import list_media
from mediawall.services.suggestions import SuggestionBacklog
from mediawall.web import create_app


LOGGER = logging.getLogger("mediawall.run")


cli = typer.Typer(add_completion=False, help="Media wall management commands")


def _prepare_logging(data_root: Path, level: int = logging.INFO) -> None:
    log_file = get_log_file_path(data_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(level, handlers=[file_handler, stream_handler])


def _initialize() -> AppConfig:
    try:
        return initialize_app()
    except BootstrapError as error:
        typer.echo(f"Initialisation failed: {error}", err=True)
        raise typer.Exit(code=1) from error


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=None, port=None, log_level="info")


@cli.command()
def serve(
    host: Optional[str] = typer.Option(
        None,
        help="Host interface for the web server (defaults to the configured host)",
    ),
    port: Optional[int] = typer.Option(
        None,
        help="Port for the web server (defaults to the configured port)",
    ),
    log_level: str = typer.Option("info", help="Logging level for the service"),
) -> None:
    """Run the FastAPI-powered media wall."""

    app_config = _initialize()
    _prepare_logging(app_config.data_root, resolve_log_level(log_level))

    app = create_app(app_config)
    bind_host = host or app_config.host
    bind_port = port or app_config.port

    server_config = uvicorn.Config(
        app,
        host=bind_host,
        port=bind_port,
        log_config=None,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    LOGGER.info("Server running at http://%s:%s", bind_host, bind_port)
    server.run()


@cli.command()
def media() -> None:
    """Print the playlist exactly as ``/api/videos`` would list it."""

    config = _initialize()
    entries = list_media(config.media_root)
    if not entries:
        typer.echo(f"No media found in {config.media_root}")
        return
    for entry in entries:
        typer.echo(f"{entry.type:<6} {entry.name}")


@cli.command()
def stats() -> None:
    """Print the likes total and the number of live suggestions."""

    config = _initialize()
    likes = LikesLedger(config.likes_file)
    corpus = ImplementedWorkCorpus(config.history_file, config.report_file)
    backlog = SuggestionBacklog(config.suggestions_file, corpus)
    typer.echo(f"Likes: {likes.total()}")
    typer.echo(f"Suggestions: {len(backlog.list())}")


if __name__ == "__main__":
    cli()
