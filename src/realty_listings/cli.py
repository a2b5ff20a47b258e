"""Command-line interface for the realty listings site.

Runs the listings API and drives the browser login flow from a terminal.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

import typer

from realty_listings import __version__
from realty_listings.config import Config, ConfigError, load_config
from realty_listings.logging_config import get_logger, setup_logging
from realty_listings.security import AuthError

if TYPE_CHECKING:
    from realty_listings.oauth.flows import PKCELoginFlow
    from realty_listings.oauth.storage import SessionStorage

app = typer.Typer(
    name="realty-listings",
    help="Realty listings - listings API server and owner login client",
    add_completion=False,
)

ConfigOption = typer.Option(
    None, "--config", "-c", help="Path to configuration file (JSON or YAML)"
)
LogLevelOption = typer.Option(
    None, "--log-level", "-l", help="Log level override (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"realty-listings version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Realty listings CLI."""


def _load(config_path: str | None, cli_args: dict[str, str | int | None] | None = None) -> Config:
    """Load configuration and set up logging, exiting on invalid settings."""
    try:
        config = load_config(path=config_path, cli_args=cli_args)
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from None
    setup_logging(config)
    return config


def _session_storage(config: Config) -> SessionStorage:
    from realty_listings.oauth.storage import create_session_storage

    key = (
        config.session_encryption_key.get_secret_value()
        if config.session_encryption_key
        else None
    )
    if not config.session_store_path:
        get_logger(__name__).warning(
            "No session_store_path configured; the login session ends with this command"
        )
    return create_session_storage(encryption_key=key, file_path=config.session_store_path)


def _login_flow(config: Config) -> PKCELoginFlow:
    from realty_listings.oauth.flows import PKCELoginFlow, WebBrowserNavigator

    try:
        return PKCELoginFlow.from_config(config, _session_storage(config), WebBrowserNavigator())
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from None


@app.command()
def serve(
    config_path: str | None = ConfigOption,
    log_level: str | None = LogLevelOption,
    host: str | None = typer.Option(None, "--host", "-h", help="Host to bind to"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind to"),
) -> None:
    """Run the listings API server."""
    from realty_listings.api.app import create_app_from_config, run_server

    cli_args: dict[str, str | int | None] = {}
    if log_level:
        cli_args["log_level"] = log_level
    if host:
        cli_args["host"] = host
    if port:
        cli_args["port"] = port

    config = _load(config_path, cli_args)
    logger = get_logger(__name__)

    try:
        api = create_app_from_config(config)
        logger.info(
            "Starting %s (env: %s, store: %s)",
            config.app_name,
            config.environment.value,
            config.listings_backend.value,
        )
        asyncio.run(run_server(api, config.host, config.port))
    except ConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        logger.info("Shutting down (keyboard interrupt)")
        raise typer.Exit(code=0) from None


@app.command()
def login(
    config_path: str | None = ConfigOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Log in through the hosted login page.

    Opens the browser, then asks for the address the browser was sent
    back to after signing in.
    """
    config = _load(config_path, {"log_level": log_level})
    flow = _login_flow(config)

    async def _run() -> None:
        try:
            await flow.start_login()
            typer.echo("Complete the sign-in in your browser.")
            redirect_url = typer.prompt("Paste the full URL you were redirected to")
            session = await flow.handle_redirect(redirect_url.strip())
        finally:
            await flow.close()

        if session is None:
            typer.echo("That URL has no authorization code; nothing to do.", err=True)
            raise typer.Exit(code=1)

        typer.echo(f"Signed in as {session.display_label}")
        if session.is_privileged_hint:
            typer.echo("This account can manage listings.")

    try:
        asyncio.run(_run())
    except AuthError as e:
        typer.echo(f"Login failed: {e}", err=True)
        raise typer.Exit(code=1) from None


@app.command()
def logout(
    config_path: str | None = ConfigOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Forget the login session and sign out of the hosted login page."""
    config = _load(config_path, {"log_level": log_level})
    flow = _login_flow(config)
    asyncio.run(flow.logout())
    typer.echo("Signed out.")


@app.command()
def whoami(
    config_path: str | None = ConfigOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Show the signed-in identity.

    Claims are read from the stored id token without verification; the
    API checks them again before allowing any change.
    """
    from realty_listings.oauth.session import AuthSessionStore

    config = _load(config_path, {"log_level": log_level})
    store = AuthSessionStore(_session_storage(config), config.privileged_groups)

    session = asyncio.run(store.load())
    if session is None:
        typer.echo("Not signed in.")
        raise typer.Exit(code=1)

    typer.echo(f"Signed in as {session.display_label}")
    typer.echo(f"Subject:     {session.subject or '-'}")
    typer.echo(f"Groups:      {', '.join(session.groups) or '-'}")
    typer.echo(f"Can edit:    {'yes' if session.is_privileged_hint else 'no'} (unverified)")
    if session.tokens.is_expired:
        typer.echo("Session expired; run 'realty-listings login' again.")


@app.command()
def listings(
    config_path: str | None = ConfigOption,
    log_level: str | None = LogLevelOption,
    available: bool | None = typer.Option(
        None, "--available/--unavailable", help="Filter by availability"
    ),
    beds: float | None = typer.Option(None, "--beds", help="Minimum bedrooms"),
    baths: float | None = typer.Option(None, "--baths", help="Minimum bathrooms"),
    max_price: float | None = typer.Option(None, "--max-price", help="Maximum price"),
) -> None:
    """List published listings, newest first."""
    from realty_listings.client.exceptions import ListingsAPIError
    from realty_listings.client.listings import ListingsClient
    from realty_listings.security import NoAuthStrategy

    config = _load(config_path, {"log_level": log_level})
    client = ListingsClient(config.api_base_url, NoAuthStrategy())

    async def _fetch() -> list[dict]:
        try:
            return await client.list_properties(
                available=available, beds=beds, baths=baths, max_price=max_price
            )
        finally:
            await client.close()

    try:
        rows = asyncio.run(_fetch())
    except ListingsAPIError as e:
        typer.echo(f"Could not load listings: {e}", err=True)
        raise typer.Exit(code=1) from None

    if not rows:
        typer.echo("No listings.")
        return

    for row in rows:
        status = "available" if row.get("available") else "unavailable"
        typer.echo(
            f"{row.get('id', '')}  {row.get('title') or '(untitled)'}  "
            f"${row.get('price', 0):,}  {row.get('bedrooms', 0)}bd/{row.get('bathrooms', 0)}ba  "
            f"{status}"
        )


@app.command()
def version() -> None:
    """Print version information."""
    typer.echo(f"realty-listings version {__version__}")
    typer.echo(f"Python {sys.version}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
