"""
OAuthKeeper Command-Line Interface

Starts the authorization server, bootstraps users and clients directly in
the configured store, and drives the session API of a running server.

Author: OAuthKeeper Team
Date: 2026-02-10
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
import httpx
import uvicorn
from pydantic import ValidationError

from oauthkeeper import __version__
from oauthkeeper.app import build_store, create_app
from oauthkeeper.core.config_manager import ConfigManager, OAuthKeeperConfig
from oauthkeeper.core.logging_config import configure_logging
from oauthkeeper.models import GRANT_TYPES, ROLE_ADMIN, ROLE_DEV, ROLE_MANAGER, NewClient, NewUser, utcnow
from oauthkeeper.oauth.minting import generate_client_secret, generate_id
from oauthkeeper.storage import StorageError, StorageType


logger = logging.getLogger("oauthkeeper.cli")

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)


def _load_config(config_path: Optional[Path], overrides: Optional[Dict[str, Any]] = None) -> OAuthKeeperConfig:
    try:
        return ConfigManager().load(
            config_file=str(config_path) if config_path else None,
            cli_overrides=overrides,
        )
    except (ValidationError, ValueError, FileNotFoundError) as e:
        click.echo(f"[ERROR] Invalid configuration: {e}", err=True)
        sys.exit(1)


async def _with_store(config: OAuthKeeperConfig, action):
    store = build_store(config)
    await store.initialize()
    try:
        return await action(store)
    finally:
        await store.close()


def _run_store_action(config: OAuthKeeperConfig, action):
    if config.storage.type == StorageType.IN_MEMORY.value:
        click.echo("[WARN] in-memory storage: changes are lost when this command exits", err=True)
    try:
        return asyncio.run(_with_store(config, action))
    except StorageError as e:
        click.echo(f"[ERROR] Storage error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="oauthkeeper")
@click.pass_context
def cli(ctx):
    """
    OAuthKeeper - OAuth2 Authorization Server

    Issue and manage OAuth2 tokens for registered clients.
    """
    ctx.ensure_object(dict)


@cli.command()
@click.option("--host", default=None, help="Host to bind to [default: from config, 127.0.0.1]")
@click.option("--port", default=None, type=int, help="Port to bind to [default: from config, 3000]")
@click.option("--workers", default=None, type=int, help="Number of worker processes")
@config_option
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level",
)
@click.option(
    "--reload",
    is_flag=True,
    help="Enable auto-reload on code changes (development mode)",
)
def start(
    host: Optional[str],
    port: Optional[int],
    workers: Optional[int],
    config_path: Optional[Path],
    log_level: Optional[str],
    reload: bool,
):
    """
    Start the authorization server.

    Examples:
        oauthkeeper start
        oauthkeeper start --port 8080
        oauthkeeper start --config oauthkeeper.yaml --log-level DEBUG
    """
    overrides: Dict[str, Any] = {}
    if host:
        overrides.setdefault("server", {})["host"] = host
    if port:
        overrides.setdefault("server", {})["port"] = port
    if workers:
        overrides.setdefault("server", {})["workers"] = workers
    if log_level:
        overrides.setdefault("logging", {})["level"] = log_level.upper()

    config = _load_config(config_path, overrides)
    configure_logging(config.logging)

    click.echo(f"Starting OAuthKeeper v{__version__}")
    click.echo(f"Host: {config.server.host}:{config.server.port}")
    click.echo(f"Storage: {config.storage.type}")
    if config_path:
        click.echo(f"Config: {config_path}")
    click.echo()

    multi_process = reload or config.server.workers > 1
    if config.server.workers > 1 and not config.oauth.state_secret:
        click.echo("[WARN] oauth.state_secret is unset; login pages will fail across workers", err=True)

    try:
        if multi_process:
            # Worker processes rebuild the app from the environment
            if config_path:
                os.environ["OAUTHKEEPER_CONFIG"] = str(config_path)
            os.environ["OAUTHKEEPER_LOG_LEVEL"] = config.logging.level
            uvicorn.run(
                "oauthkeeper.app:create_app_from_env",
                host=config.server.host,
                port=config.server.port,
                workers=None if reload else config.server.workers,
                log_level=config.logging.level.lower(),
                reload=reload,
                factory=True,
            )
        else:
            uvicorn.run(
                create_app(config),
                host=config.server.host,
                port=config.server.port,
                log_level=config.logging.level.lower(),
            )
    except KeyboardInterrupt:
        click.echo("\nShutting down OAuthKeeper...")
    except Exception as e:
        click.echo(f"[ERROR] Error starting OAuthKeeper: {e}", err=True)
        sys.exit(1)


@cli.command()
def version():
    """Show OAuthKeeper version."""
    click.echo(f"OAuthKeeper version {__version__}")


@cli.command()
@config_option
def config(config_path: Optional[Path]):
    """Show the effective configuration (state secret redacted)."""
    effective = _load_config(config_path).model_dump(mode="json")
    if effective["oauth"].get("state_secret"):
        effective["oauth"]["state_secret"] = "***REDACTED***"
    click.echo(json.dumps(effective, indent=2))


# ========== Store bootstrap ==========

@cli.group()
def user():
    """Manage users directly in the configured store."""


@user.command("add")
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Account password")
@click.option("--name", default="", help="Display name")
@click.option(
    "--role",
    "roles",
    multiple=True,
    type=click.Choice([ROLE_ADMIN, ROLE_MANAGER, ROLE_DEV]),
    help="Role to grant (repeatable)",
)
@config_option
def user_add(email: str, password: str, name: str, roles: Tuple[str, ...], config_path: Optional[Path]):
    """
    Create a validated user.

    Examples:
        oauthkeeper user add admin@example.com --role admin
    """
    settings = _load_config(config_path)
    new_user = NewUser(
        email=email,
        password=password,
        name=name,
        roles={role: True for role in roles},
        validated=utcnow(),
    )

    async def action(store):
        if await store.get_user_by_email(email.lower()) is not None:
            raise click.ClickException(f"User already exists: {email}")
        return await store.add_user(new_user, generate_id(), utcnow())

    created = _run_store_action(settings, action)
    click.echo(f"[OK] User created: {created.user_id}")


@cli.group()
def client():
    """Manage clients directly in the configured store."""


@client.command("add")
@click.argument("name")
@click.option("--owner", required=True, help="User ID of the owning developer")
@click.option("--redirect-uri", "redirect_uris", multiple=True, help="Registered redirect URI (repeatable)")
@click.option("--scope", "scopes", multiple=True, help="Allowed scope (repeatable)")
@click.option("--unrestricted", is_flag=True, help="Register without a scope restriction")
@click.option(
    "--grant",
    "grants",
    multiple=True,
    type=click.Choice(list(GRANT_TYPES)),
    help="Allowed grant type (repeatable)",
)
@config_option
def client_add(
    name: str,
    owner: str,
    redirect_uris: Tuple[str, ...],
    scopes: Tuple[str, ...],
    unrestricted: bool,
    grants: Tuple[str, ...],
    config_path: Optional[Path],
):
    """
    Register a client and print its generated ID and secret.

    Examples:
        oauthkeeper client add "My App" --owner <user-id> --grant password --scope r
    """
    settings = _load_config(config_path)
    if unrestricted and scopes:
        click.echo("[ERROR] --unrestricted cannot be combined with --scope", err=True)
        sys.exit(1)

    new_client = NewClient(
        user_id=owner,
        redirect_uris=list(redirect_uris),
        scopes=None if unrestricted else list(scopes),
        grants=list(grants),
        name=name,
    )

    async def action(store):
        if await store.get_user(owner) is None:
            raise click.ClickException(f"Owner not found: {owner}")
        record = store.new_client_record(new_client, generate_id(), generate_client_secret(), utcnow())
        await store.add_client(record)
        return record

    created = _run_store_action(settings, action)
    click.echo("[OK] Client registered")
    click.echo(f"   Client ID:     {created.id}")
    click.echo(f"   Client secret: {created.client_secret}")


@cli.command("purge-expired")
@config_option
def purge_expired(config_path: Optional[Path]):
    """Delete expired authorization codes and tokens."""
    settings = _load_config(config_path)
    removed = _run_store_action(settings, lambda store: store.purge_expired())
    click.echo(f"[OK] Removed {removed['codes']} codes and {removed['tokens']} tokens")


# ========== Session API ==========

server_option = click.option(
    "--server",
    default="http://127.0.0.1:3000",
    show_default=True,
    help="Base URL of a running OAuthKeeper",
)


def _post(url: str, body: Dict[str, Any], access_token: Optional[str] = None) -> None:
    headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
    try:
        response = httpx.post(url, json=body, headers=headers, timeout=10.0)
    except httpx.HTTPError as e:
        click.echo(f"[ERROR] Request failed: {e}", err=True)
        sys.exit(1)

    text = response.text
    click.echo(json.dumps(response.json(), indent=2) if text else "{}")
    if response.is_error:
        sys.exit(1)


@cli.group()
def session():
    """Call the session API of a running server."""


@session.command("login")
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True, help="Account password")
@server_option
def session_login(email: str, password: str, server: str):
    """Log in and print the session token pair."""
    _post(f"{server}/api/session/login", {"email": email, "password": password})


@session.command("refresh")
@click.argument("refresh_token")
@server_option
def session_refresh(refresh_token: str, server: str):
    """Exchange a session refresh token for a new pair."""
    _post(f"{server}/api/session/refresh", {"refreshToken": refresh_token})


@session.command("logout")
@click.argument("access_token")
@click.argument("refresh_token")
@server_option
def session_logout(access_token: str, refresh_token: str, server: str):
    """Revoke a session refresh token."""
    _post(f"{server}/api/session/logout", {"refreshToken": refresh_token}, access_token=access_token)


def main():
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
