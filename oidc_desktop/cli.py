"""CLI entry point for oidc-desktop."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, NoReturn

import click

from . import __version__
from .api_client import ApiClient
from .config import Config, ConfigError, load_config
from .errors import ClassifiedError
from .oauth import MetadataCache, OAuthManager
from .output import OutputHandler

# Logger for CLI
logger = logging.getLogger("oidc-desktop")


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Path to desktop.config.json")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--debug", is_flag=True, help="Show developer error details (URL, stack)")
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context,
    json_mode: bool,
    config_path: str | None,
    env_path: str | None,
    verbose: bool,
    debug: bool,
) -> None:
    """oidc-desktop - Sign in with the system browser and call APIs with the issued tokens."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode, debug=debug)

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_config(ctx: click.Context) -> Config | NoReturn:
    """Get config from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        config = load_config(ctx.obj["config_path"], ctx.obj["env_path"])
    except (FileNotFoundError, json.JSONDecodeError, ConfigError) as e:
        output.error(e)
        raise SystemExit(1)  # Never reached due to sys.exit in output.error

    if config.app.debug_error_details:
        output.debug = True
    return config


async def _get_token(manager: OAuthManager, output: OutputHandler) -> str:
    """Get an access token, running a browser login when one is required."""
    try:
        return await manager.get_access_token()
    except ClassifiedError as e:
        if not e.is_login_required:
            raise
        logger.info("Login required")
        output.status("Login required, opening the system browser...")
        await manager.login()
        return await manager.get_access_token()


async def _fetch_metadata(config: Config) -> dict[str, Any]:
    cache = MetadataCache(config.oauth.authority)
    metadata = await cache.get_metadata()
    return asdict(metadata)


async def _login(config: Config, output: OutputHandler) -> dict[str, Any]:
    async with OAuthManager(config.oauth, on_status=output.status) as manager:
        await manager.login()
        tokens = manager.tokens
        return {
            "logged_in": manager.is_logged_in(),
            "has_id_token": bool(tokens and tokens.id_token),
            "has_refresh_token": bool(tokens and tokens.has_refresh_token()),
        }


async def _token(config: Config, output: OutputHandler) -> str:
    async with OAuthManager(config.oauth, on_status=output.status) as manager:
        return await _get_token(manager, output)


async def _call(
    config: Config,
    output: OutputHandler,
    path: str,
    expire_access_token: bool,
    expire_refresh_token: bool,
) -> Any:
    async with OAuthManager(config.oauth, on_status=output.status) as manager:
        await _get_token(manager, output)

        if expire_access_token:
            manager.expire_access_token()
        if expire_refresh_token:
            manager.expire_refresh_token()

        client = ApiClient(config.app.api_base_url, manager)
        try:
            return await client.get(path)
        except ClassifiedError as e:
            if not e.is_login_required:
                raise
            # The refresh token was rejected: sign in again, as a user would
            output.status("Session expired, opening the system browser...")
            await manager.login()
            return await client.get(path)


@main.command()
@click.pass_context
def metadata(ctx: click.Context) -> None:
    """Show the authorization server endpoints."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)

    try:
        data = asyncio.run(_fetch_metadata(config))
    except Exception as e:
        output.error(e)
        return

    lines = [f"{key}: {value}" for key, value in data.items() if value is not None]
    output.success(data, human_message="\n".join(lines))


@main.command()
@click.pass_context
def login(ctx: click.Context) -> None:
    """Sign in with the system browser."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)

    try:
        result = asyncio.run(_login(config, output))
    except Exception as e:
        output.error(e)
        return

    output.success(result, human_message=click.style("Logged in", fg="green"))


@main.command()
@click.option("--show", is_flag=True, help="Print the full access token")
@click.pass_context
def token(ctx: click.Context, show: bool) -> None:
    """Get an access token, signing in if required."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)

    try:
        access_token = asyncio.run(_token(config, output))
    except Exception as e:
        output.error(e)
        return

    display = access_token if show else f"{access_token[:8]}..."
    output.success({"access_token": display}, human_message=display)


@main.command()
@click.argument("path")
@click.option("--expire-access-token", is_flag=True, help="Corrupt the access token before calling (testing)")
@click.option("--expire-refresh-token", is_flag=True, help="Corrupt the refresh token before calling (testing)")
@click.pass_context
def call(ctx: click.Context, path: str, expire_access_token: bool, expire_refresh_token: bool) -> None:
    """Call an API path with an access token."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)

    if not config.app.api_base_url:
        output.error(ConfigError("The app section of the configuration has no apiBaseUrl"))
        return

    try:
        data = asyncio.run(
            _call(config, output, path, expire_access_token, expire_refresh_token)
        )
    except Exception as e:
        output.error(e)
        return

    output.success(data)


if __name__ == "__main__":
    main()
