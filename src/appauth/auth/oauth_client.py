"""
HTTP exchanges with the authorization server: discovery, token requests
and dynamic client registration.
Adheres to RFC 6749 (OAuth 2.0), RFC 7591 (registration) and OpenID Connect Discovery 1.0.

No request is retried: an authorization code is single use, so retry
policy is left to the caller.
"""
import asyncio
import json
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
import structlog

from ..config import Config
from ..exceptions import (
    AuthorizationException,
    GeneralErrors,
    RegistrationRequestErrors,
    TokenRequestErrors,
)
from ..models.configuration import AuthorizationServiceConfiguration
from ..models.registration import RegistrationRequest, RegistrationResponse
from ..models.token import TokenRequest, TokenResponse
from ..utils.clock import Clock, default_clock
from ..utils.codec import form_url_encode
from .auth_state import AuthState
from .id_token import IdToken

logger = structlog.get_logger(__name__)

WELL_KNOWN_PATH = ".well-known"
OPENID_CONFIGURATION_RESOURCE = "openid-configuration"

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class AuthorizationService:
    """
    Talks to an authorization server on behalf of one client application.
    Use as an async context manager, or call close_session() when done.
    """

    def __init__(
        self,
        app_config: Config,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Clock = default_clock,
    ):
        """
        Args:
            app_config: Global configuration (HTTP client and validation settings).
            session: An optional shared aiohttp.ClientSession. If None, one will be created.
            clock: Source of the current time for token expiry and ID token checks.
        """
        self.app_config = app_config
        self.clock = clock
        self._session = session
        self._session_owner = session is None
        self.logger = logger

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            http_cfg = self.app_config.http
            ssl_context = None
            if not http_cfg.ssl_verify:
                self.logger.warning("SSL verification is DISABLED for the authorization service. This is insecure.")
                ssl_context = False

            connector = aiohttp.TCPConnector(
                limit=http_cfg.connection_pool_total_limit,
                limit_per_host=http_cfg.connection_pool_per_host_limit,
                ttl_dns_cache=http_cfg.connection_pool_dns_cache_ttl_seconds,
                ssl=ssl_context,
            )
            self._session = aiohttp.ClientSession(connector=connector)
            self._session_owner = True
        return self._session

    async def close_session(self):
        """Closes the aiohttp session if it was created by this instance."""
        if self._session and not self._session.closed and self._session_owner:
            self.logger.debug("Closing owned aiohttp session for authorization service.")
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_session()

    def _timeout(self) -> aiohttp.ClientTimeout:
        http_cfg = self.app_config.http
        return aiohttp.ClientTimeout(
            total=http_cfg.request_timeout_seconds,
            connect=http_cfg.connect_timeout_seconds,
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> Tuple[int, str]:
        """
        Executes one HTTP exchange and returns (status, body).

        Raises:
            AuthorizationException: NETWORK_ERROR for any transport failure or timeout,
                                    JSON_DESERIALIZATION_ERROR for an undecodable body.
        """
        session = await self._get_session()
        log = self.logger.bind(method=method, url_host=urlparse(url).hostname)
        try:
            async with session.request(method, url, timeout=self._timeout(), **kwargs) as response:
                body = await response.text()
                log.debug("Authorization server response", status=response.status)
                return response.status, body
        except aiohttp.ClientConnectorError as e:
            log.error("Connection to authorization server failed", error=str(e.os_error or e))
            raise AuthorizationException.from_template(GeneralErrors.NETWORK_ERROR, e) from e
        except asyncio.TimeoutError as e:
            log.error("Request to authorization server timed out")
            raise AuthorizationException.from_template(GeneralErrors.NETWORK_ERROR, e) from e
        except aiohttp.ClientError as e:
            log.error("AIOHTTP client error", error_type=type(e).__name__, error_message=str(e))
            raise AuthorizationException.from_template(GeneralErrors.NETWORK_ERROR, e) from e
        except UnicodeDecodeError as e:
            log.error("Authorization server response body could not be decoded", error=str(e))
            raise AuthorizationException.from_template(GeneralErrors.JSON_DESERIALIZATION_ERROR, e) from e

    @staticmethod
    def discovery_uri_for(issuer: str) -> str:
        """The OpenID Connect discovery URI of an issuer."""
        return f"{issuer.rstrip('/')}/{WELL_KNOWN_PATH}/{OPENID_CONFIGURATION_RESOURCE}"

    async def fetch_configuration_from_issuer(self, issuer: str) -> AuthorizationServiceConfiguration:
        return await self.fetch_configuration(self.discovery_uri_for(issuer))

    async def fetch_configuration(self, discovery_uri: str) -> AuthorizationServiceConfiguration:
        """
        Fetches and parses a discovery document.

        Raises:
            AuthorizationException: NETWORK_ERROR (transport failure or non-2xx status),
                                    JSON_DESERIALIZATION_ERROR (body is not JSON) or
                                    INVALID_DISCOVERY_DOCUMENT (required members missing).
        """
        log = self.logger.bind(discovery_host=urlparse(discovery_uri).hostname)
        log.info("Fetching authorization service configuration")
        status, body = await self._send("GET", discovery_uri, headers={"Accept": JSON_CONTENT_TYPE})
        if not _is_success(status):
            log.error("Discovery document request failed", status=status)
            raise AuthorizationException.from_oauth_template(
                GeneralErrors.NETWORK_ERROR, None, f"Discovery request failed with HTTP status {status}", None
            )

        try:
            document = json.loads(body)
        except json.JSONDecodeError as e:
            log.error("Failed to decode JSON from discovery document", error=str(e))
            raise AuthorizationException.from_template(GeneralErrors.JSON_DESERIALIZATION_ERROR, e) from e

        try:
            if not isinstance(document, dict):
                raise ValueError("Discovery document must be a JSON object")
            configuration = AuthorizationServiceConfiguration.from_discovery_document(document)
        except ValueError as e:
            log.error("Malformed discovery document", error=str(e))
            raise AuthorizationException.from_template(GeneralErrors.INVALID_DISCOVERY_DOCUMENT, e) from e

        log.info("Authorization service configuration fetched", issuer=configuration.issuer)
        return configuration

    async def perform_token_request(
        self, request: TokenRequest, client_secret: Optional[str] = None
    ) -> TokenResponse:
        """
        Sends a token request and validates any ID token in the response.

        Args:
            request: The token request to send.
            client_secret: Authenticates the client with HTTP Basic when given;
                           public clients send their client_id in the body instead.

        Returns:
            The TokenResponse. It is never returned with an ID token that failed validation.

        Raises:
            AuthorizationException: NETWORK_ERROR, SERVER_ERROR, JSON_DESERIALIZATION_ERROR,
                                    a token endpoint error (2000 range),
                                    TOKEN_RESPONSE_CONSTRUCTION_ERROR,
                                    ID_TOKEN_PARSING_ERROR or ID_TOKEN_VALIDATION_ERROR.
        """
        token_endpoint = request.configuration.token_endpoint
        log = self.logger.bind(
            client_id=request.client_id,
            grant_type=request.grant_type,
            token_url_host=urlparse(token_endpoint).hostname,
        )
        log.info("Requesting token from endpoint")

        auth = aiohttp.BasicAuth(request.client_id, client_secret) if client_secret else None
        body = form_url_encode(request.request_parameters(include_client_id=auth is None))
        headers = {"Content-Type": FORM_CONTENT_TYPE, "Accept": JSON_CONTENT_TYPE}
        status, response_text = await self._send("POST", token_endpoint, data=body, headers=headers, auth=auth)

        payload = self._decode_json_object(status, response_text, log)
        if "error" in payload:
            ex = self._oauth_error(TokenRequestErrors, payload)
            log.error("Token request failed", status=status, error=ex.error)
            raise ex
        if not _is_success(status):
            log.error("Token request failed", status=status, response_body=response_text[:500])
            raise self._server_error(status)

        try:
            response = TokenResponse.from_wire(request, payload, self.clock)
        except ValueError as e:
            log.error("Failed to construct token response", error=str(e))
            raise AuthorizationException.from_template(GeneralErrors.TOKEN_RESPONSE_CONSTRUCTION_ERROR, e) from e

        if response.id_token is not None:
            id_token = IdToken.parse(response.id_token)
            id_token.validate_claims(
                request,
                self.clock,
                skip_issuer_https_check=self.app_config.validation.skip_issuer_https_check,
            )

        log.info("Token successfully obtained", has_refresh_token=response.refresh_token is not None)
        return response

    async def perform_registration_request(self, request: RegistrationRequest) -> RegistrationResponse:
        """
        Registers this client dynamically.

        Raises:
            AuthorizationException: NETWORK_ERROR, SERVER_ERROR, JSON_DESERIALIZATION_ERROR,
                                    a registration endpoint error (4000 range) or
                                    INVALID_REGISTRATION_RESPONSE.
        """
        registration_endpoint = request.configuration.registration_endpoint
        if not registration_endpoint:
            raise ValueError("The authorization service does not declare a registration endpoint")
        log = self.logger.bind(registration_url_host=urlparse(registration_endpoint).hostname)
        log.info("Attempting dynamic client registration")

        headers = {"Content-Type": JSON_CONTENT_TYPE, "Accept": JSON_CONTENT_TYPE}
        status, response_text = await self._send(
            "POST", registration_endpoint, data=json.dumps(request.to_wire()), headers=headers
        )

        payload = self._decode_json_object(status, response_text, log)
        if "error" in payload:
            ex = self._oauth_error(RegistrationRequestErrors, payload)
            log.error("Dynamic client registration failed", status=status, error=ex.error)
            raise ex
        if not _is_success(status):
            log.error("Dynamic client registration failed", status=status, response_body=response_text[:500])
            raise self._server_error(status)

        try:
            response = RegistrationResponse.from_wire(request, payload)
        except ValueError as e:
            log.error("Invalid registration response", error=str(e))
            raise AuthorizationException.from_template(GeneralErrors.INVALID_REGISTRATION_RESPONSE, e) from e

        log.info("Dynamic client registration successful", client_id=response.client_id)
        return response

    async def refresh_tokens_if_needed(
        self,
        state: AuthState,
        additional_parameters: Optional[Mapping[str, str]] = None,
        client_secret: Optional[str] = None,
    ) -> Tuple[AuthState, Optional[str], Optional[str]]:
        """
        Returns fresh tokens, refreshing them first when they are about to expire.

        The refresh request authenticates with `client_secret`, else the secret
        from dynamic registration held by `state`, else the configured
        `client.client_secret`.

        Returns:
            A tuple of (new AuthState, access token, id token). The state is the
            given one when no refresh was needed.

        Raises:
            IllegalStateError: If a refresh is needed but the state holds no refresh token.
            AuthorizationException: If the refresh request fails.
        """
        tolerance = self.app_config.validation.token_expiry_tolerance_seconds
        if not state.needs_token_refresh(self.clock, tolerance):
            return state, state.access_token, state.id_token

        self.logger.debug("Access token needs refresh.")
        request = state.create_token_refresh(additional_parameters)
        client_secret = client_secret or state.client_secret or self.app_config.client.client_secret
        response = await self.perform_token_request(request, client_secret=client_secret)
        new_state = state.update_from_token(response)
        return new_state, new_state.access_token, new_state.id_token

    def _decode_json_object(self, status: int, body: str, log: Any) -> Dict[str, Any]:
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            if not _is_success(status):
                log.error("Authorization server returned a non-JSON error", status=status, response_body=body[:500])
                raise self._server_error(status) from e
            log.error("Failed to decode JSON from response", error=str(e), response_text=body[:500])
            raise AuthorizationException.from_template(GeneralErrors.JSON_DESERIALIZATION_ERROR, e) from e
        if not isinstance(payload, dict):
            if not _is_success(status):
                raise self._server_error(status)
            raise AuthorizationException.from_template(
                GeneralErrors.JSON_DESERIALIZATION_ERROR, ValueError("Response body must be a JSON object")
            )
        return payload

    @staticmethod
    def _oauth_error(catalogue: Any, payload: Mapping[str, Any]) -> AuthorizationException:
        error = payload.get("error")
        error = error if isinstance(error, str) else None
        description = payload.get("error_description")
        uri = payload.get("error_uri")
        return AuthorizationException.from_oauth_template(
            catalogue.by_string(error),
            error,
            description if isinstance(description, str) else None,
            uri if isinstance(uri, str) else None,
        )

    @staticmethod
    def _server_error(status: int) -> AuthorizationException:
        return AuthorizationException.from_oauth_template(
            GeneralErrors.SERVER_ERROR, None, f"Server responded with HTTP status {status}", None
        )
