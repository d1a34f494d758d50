from __future__ import annotations

import logging

import typer
from dotenv import load_dotenv

from airform.config import Settings

cli = typer.Typer(add_completion=False)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_server(host: str | None, port: int | None) -> None:
    import uvicorn

    from airform.app import create_app

    settings = Settings()
    configure_logging(settings)
    resolved_host = host or settings.host
    resolved_port = port if port is not None else settings.port
    uvicorn.run(create_app(settings), host=resolved_host, port=resolved_port)


@cli.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    host: str | None = typer.Option(None, help="Address to bind"),
    port: int | None = typer.Option(None, help="Port to bind"),
) -> None:
    load_dotenv()
    ctx.obj = {"host": host, "port": port}
    if ctx.invoked_subcommand is None:
        run_server(host, port)


@cli.command()
def run(
    ctx: typer.Context,
    host: str | None = typer.Option(None, help="Address to bind"),
    port: int | None = typer.Option(None, help="Port to bind"),
) -> None:
    base = ctx.obj or {}
    resolved_host = host or base.get("host")
    resolved_port = port if port is not None else base.get("port")
    run_server(resolved_host, resolved_port)


@cli.command("issue-token")
def issue_token(user_id: str = typer.Argument(..., help="Stored user id")) -> None:
    """Print a session token for an existing user."""
    from airform.storage import init_storage
    from airform.tokens import TokenService

    settings = Settings()
    storage = init_storage(settings)
    if storage.users.get_user(user_id) is None:
        typer.echo(f"No user with id {user_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(TokenService(settings, storage.users).issue_session_token(user_id))
