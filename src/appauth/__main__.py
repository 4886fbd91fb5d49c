"""CLI entry point for the AppAuth client."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import click
import structlog

from .auth.auth_state import AuthState
from .auth.oauth_client import AuthorizationService
from .auth.redirect import response_from_redirect
from .auth.state_manager import AuthStateManager
from .auth.state_store import get_state_store
from .config import ClientConfig, Config
from .exceptions import AuthorizationException, IllegalStateError
from .models.authorization import AuthorizationRequest
from .models.common import ResponseTypeValues
from .models.configuration import AuthorizationServiceConfiguration
from .models.end_session import EndSessionRequest
from .utils.logging import configure_logging

logger = structlog.get_logger(__name__)


async def _resolve_service_configuration(
    service: AuthorizationService, client_config: ClientConfig
) -> AuthorizationServiceConfiguration:
    if client_config.has_static_endpoints():
        return client_config.to_service_configuration()
    if client_config.discovery_uri:
        return await service.fetch_configuration(client_config.discovery_uri)
    if client_config.issuer:
        return await service.fetch_configuration_from_issuer(client_config.issuer)
    raise click.UsageError("Configure either client.authorization_endpoint/token_endpoint, client.discovery_uri or client.issuer.")


def _state_manager(config: Config) -> AuthStateManager:
    return AuthStateManager(get_state_store(config.storage))


def _run(coro_factory: Callable[[], Awaitable[Any]]) -> Any:
    """Runs a coroutine, turning catalogued failures into a non-zero exit."""
    try:
        return asyncio.run(coro_factory())
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user.", err=True)
        sys.exit(130)
    except AuthorizationException as e:
        click.echo(f"Authorization failed: {e.to_json()}", err=True)
        sys.exit(1)
    except IllegalStateError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "--config-file", "-c",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Path to a JSON configuration file.",
    envvar="APPAUTH_CONFIG_FILE"
)
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override the logging level (e.g., DEBUG, INFO).",
    envvar="APPAUTH_LOGGING_LEVEL"
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default=None,
    help="Override logging format.",
    envvar="APPAUTH_LOGGING_FORMAT"
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str], log_format: Optional[str]) -> None:
    """AppAuth - OAuth 2.0 / OpenID Connect client for native applications."""
    try:
        if config_file:
            cfg = Config.from_file(Path(config_file))
        else:
            # Load from environment variables (and .env file if present)
            cfg = Config()
    except (OSError, ValueError) as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    if log_level:
        cfg.logging.level = log_level.upper()
    if log_format:
        cfg.logging.format = log_format.lower()
    configure_logging(cfg.logging)

    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


@cli.command()
@click.argument("discovery_uri", required=False)
@click.pass_context
def discover(ctx: click.Context, discovery_uri: Optional[str]) -> None:
    """Fetches and prints an authorization server configuration."""
    config: Config = ctx.obj["config"]

    async def run() -> AuthorizationServiceConfiguration:
        async with AuthorizationService(config) as service:
            if discovery_uri:
                return await service.fetch_configuration(discovery_uri)
            return await _resolve_service_configuration(service, config.client)

    configuration = _run(run)
    click.echo(json.dumps(configuration.model_dump(mode="json", exclude_none=True), indent=2))


@cli.command("authorize-url")
@click.option("--login-hint", default=None, help="Hint about the account to sign in with.")
@click.option("--prompt", default=None, help="OpenID Connect prompt value (e.g. 'login', 'consent').")
@click.pass_context
def authorize_url(ctx: click.Context, login_hint: Optional[str], prompt: Optional[str]) -> None:
    """Builds an authorization request, remembers it and prints the URI to open in a browser."""
    config: Config = ctx.obj["config"]
    if not config.client.client_id:
        raise click.UsageError("client.client_id must be configured.")

    async def run() -> str:
        async with AuthorizationService(config) as service:
            service_config = await _resolve_service_configuration(service, config.client)
        request = (
            AuthorizationRequest.builder(
                service_config,
                config.client.client_id,
                ResponseTypeValues.CODE.value,
                config.client.redirect_uri,
            )
            .set_scopes(config.client.scopes)
            .set_login_hint(login_hint)
            .set_prompt(prompt)
            .set_additional_parameters(config.client.additional_parameters)
            .build()
        )
        manager = _state_manager(config)
        await manager.save_pending_request(request)
        await manager.update(lambda state: state.with_configuration(service_config))
        return request.to_uri()

    click.echo(_run(run))


@cli.command()
@click.argument("redirect_uri")
@click.pass_context
def complete(ctx: click.Context, redirect_uri: str) -> None:
    """Completes a pending authorization with the redirect URI the browser landed on."""
    config: Config = ctx.obj["config"]

    async def run() -> AuthState:
        manager = _state_manager(config)
        request = await manager.load_pending_request()
        if not isinstance(request, AuthorizationRequest):
            raise click.UsageError("No pending authorization request; run 'authorize-url' first.")

        try:
            response = response_from_redirect(request, redirect_uri)
        except AuthorizationException as ex:
            await manager.update_after_authorization(None, ex)
            raise
        finally:
            await manager.clear_pending_request()
        state = await manager.update_after_authorization(response)

        if response.authorization_code is None:
            return state
        async with AuthorizationService(config) as service:
            try:
                token_response = await service.perform_token_request(
                    response.create_token_exchange_request(),
                    client_secret=state.client_secret or config.client.client_secret,
                )
            except AuthorizationException as ex:
                await manager.update_after_token_response(None, ex)
                raise
        return await manager.update_after_token_response(token_response)

    state = _run(run)
    click.echo(json.dumps(_summary(state), indent=2))


@cli.command()
@click.option("--force", is_flag=True, help="Refresh even if the access token is still valid.")
@click.pass_context
def refresh(ctx: click.Context, force: bool) -> None:
    """Refreshes the stored tokens if they are about to expire."""
    config: Config = ctx.obj["config"]

    async def run() -> AuthState:
        manager = _state_manager(config)
        state = await manager.current()
        candidate = state.with_needs_token_refresh(True) if force else state
        async with AuthorizationService(config) as service:
            new_state, _, _ = await service.refresh_tokens_if_needed(candidate)
        if new_state is candidate:
            return state
        if not await manager.compare_and_set(state, new_state):
            logger.warning("Auth state changed during refresh; keeping the newer state.")
            return await manager.current()
        return new_state

    state = _run(run)
    click.echo(json.dumps(_summary(state), indent=2))


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Shows a summary of the stored authorization state (no secrets)."""
    config: Config = ctx.obj["config"]
    state = _run(lambda: _state_manager(config).current())
    click.echo(json.dumps(_summary(state), indent=2))


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Discards the stored state and prints the end-session URI if the server has one."""
    config: Config = ctx.obj["config"]

    async def run() -> Optional[str]:
        manager = _state_manager(config)
        state = await manager.current()
        service_config = state.authorization_service_configuration
        end_session_uri = None
        if service_config is not None and service_config.end_session_endpoint:
            end_session_uri = (
                EndSessionRequest.builder(service_config)
                .set_id_token_hint(state.id_token)
                .set_post_logout_redirect_uri(config.client.redirect_uri)
                .build()
                .to_uri()
            )
        await manager.logout()
        return end_session_uri

    end_session_uri = _run(run)
    click.echo("Logged out.")
    if end_session_uri:
        click.echo(f"To end the session at the provider, open: {end_session_uri}")


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    from . import __version__
    click.echo(f"AppAuth v{__version__}")


@cli.command()
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config = ctx.obj["config"]
    click.echo(json.dumps(config.model_dump(mode="json", exclude={"client": {"client_secret"}}), indent=2))


def _summary(state: AuthState) -> Dict[str, Any]:
    service_config = state.authorization_service_configuration
    return {
        "is_authorized": state.is_authorized,
        "has_access_token": state.access_token is not None,
        "has_id_token": state.id_token is not None,
        "has_refresh_token": state.refresh_token is not None,
        "access_token_expiration_time": state.access_token_expiration_time,
        "needs_token_refresh": state.needs_token_refresh(),
        "scope": state.scope,
        "issuer": service_config.issuer if service_config else None,
        "authorization_exception": state.authorization_exception.to_dict() if state.authorization_exception else None,
    }


if __name__ == "__main__":
    cli()
