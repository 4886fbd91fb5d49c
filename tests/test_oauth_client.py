"""
Unit tests for AuthorizationService.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs

import aiohttp  # type: ignore[import-not-found]
import pytest  # type: ignore[import-not-found]

from appauth.auth.auth_state import AuthState
from appauth.auth.oauth_client import AuthorizationService
from appauth.config import Config
from appauth.exceptions import (
    AuthorizationException,
    GeneralErrors,
    IllegalStateError,
    RegistrationRequestErrors,
    TokenRequestErrors,
)
from appauth.models.authorization import AuthorizationRequest, AuthorizationResponse
from appauth.models.configuration import AuthorizationServiceConfiguration
from appauth.models.registration import RegistrationRequest
from appauth.models.token import TokenRequest

from conftest import ISSUER, NOW


def _mock_session(status=200, body=""):
    """A session whose request() context manager yields a response with the given status and body."""
    if not isinstance(body, str):
        body = json.dumps(body)
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=body)
    session = MagicMock()
    session.request.return_value.__aenter__.return_value = response
    return session


@pytest.fixture
def app_config():
    return Config()


@pytest.fixture
def service(app_config, clock):
    return AuthorizationService(app_config, clock=clock)


@pytest.fixture
def code_request(discovered_config):
    return (
        TokenRequest.builder(discovered_config, "c1")
        .set_authorization_code("abc")
        .set_redirect_uri("https://app/cb")
        .set_nonce("nonce-1")
        .build()
    )


# --- Discovery ---

def test_discovery_uri_for():
    assert AuthorizationService.discovery_uri_for(ISSUER) == f"{ISSUER}/.well-known/openid-configuration"
    assert AuthorizationService.discovery_uri_for(f"{ISSUER}/") == f"{ISSUER}/.well-known/openid-configuration"


@pytest.mark.asyncio
async def test_fetch_configuration_success(service, discovery_document):
    session = _mock_session(200, discovery_document)
    with patch.object(service, "_get_session", AsyncMock(return_value=session)):
        config = await service.fetch_configuration_from_issuer(ISSUER)

    assert config.token_endpoint == f"{ISSUER}/token"
    assert config.discovery.issuer == ISSUER
    args, kwargs = session.request.call_args
    assert args == ("GET", f"{ISSUER}/.well-known/openid-configuration")
    assert isinstance(kwargs["timeout"], aiohttp.ClientTimeout)


@pytest.mark.asyncio
async def test_fetch_configuration_http_error(service):
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(404, "not found"))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.fetch_configuration(f"{ISSUER}/.well-known/openid-configuration")
    assert excinfo.value == GeneralErrors.NETWORK_ERROR
    assert "404" in excinfo.value.error_description


@pytest.mark.asyncio
async def test_fetch_configuration_invalid_json(service):
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(200, "<html>"))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.fetch_configuration("https://idp/config")
    assert excinfo.value == GeneralErrors.JSON_DESERIALIZATION_ERROR


@pytest.mark.asyncio
@pytest.mark.parametrize("document", [[1, 2], {"issuer": ISSUER, "authorization_endpoint": f"{ISSUER}/a"}])
async def test_fetch_configuration_invalid_document(service, document):
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(200, document))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.fetch_configuration("https://idp/config")
    assert excinfo.value == GeneralErrors.INVALID_DISCOVERY_DOCUMENT


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [aiohttp.ClientError("boom"), asyncio.TimeoutError()])
async def test_fetch_configuration_network_error(service, error):
    session = _mock_session()
    session.request.side_effect = error
    with patch.object(service, "_get_session", AsyncMock(return_value=session)):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.fetch_configuration("https://idp/config")
    assert excinfo.value == GeneralErrors.NETWORK_ERROR
    assert excinfo.value.__cause__ is error


def _undecodable_session(status=200):
    session = _mock_session(status)
    response = session.request.return_value.__aenter__.return_value
    response.text = AsyncMock(side_effect=UnicodeDecodeError("utf-8", b'{"x":"\xff\xfe"}', 6, 7, "invalid start byte"))
    return session


@pytest.mark.asyncio
async def test_fetch_configuration_undecodable_body(service):
    with patch.object(service, "_get_session", AsyncMock(return_value=_undecodable_session())):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.fetch_configuration("https://idp/config")
    assert excinfo.value == GeneralErrors.JSON_DESERIALIZATION_ERROR
    assert isinstance(excinfo.value.__cause__, UnicodeDecodeError)


@pytest.mark.asyncio
async def test_perform_token_request_undecodable_body(service, code_request):
    with patch.object(service, "_get_session", AsyncMock(return_value=_undecodable_session())):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_token_request(code_request)
    assert excinfo.value == GeneralErrors.JSON_DESERIALIZATION_ERROR


# --- Token requests ---

@pytest.mark.asyncio
async def test_perform_token_request_public_client(service, code_request, make_id_token, valid_claims):
    payload = {
        "access_token": "at",
        "token_type": "Bearer",
        "expires_in": 3600,
        "refresh_token": "rt",
        "id_token": make_id_token(valid_claims),
    }
    session = _mock_session(200, payload)
    with patch.object(service, "_get_session", AsyncMock(return_value=session)):
        response = await service.perform_token_request(code_request)

    assert response.access_token == "at"
    assert response.access_token_expiration_time == NOW + 3600

    args, kwargs = session.request.call_args
    assert args == ("POST", f"{ISSUER}/token")
    assert kwargs["auth"] is None
    assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
    assert parse_qs(kwargs["data"]) == {
        "client_id": ["c1"],
        "grant_type": ["authorization_code"],
        "code": ["abc"],
        "redirect_uri": ["https://app/cb"],
    }


@pytest.mark.asyncio
async def test_perform_token_request_confidential_client_uses_basic_auth(service, code_request):
    session = _mock_session(200, {"access_token": "at", "token_type": "Bearer"})
    with patch.object(service, "_get_session", AsyncMock(return_value=session)):
        await service.perform_token_request(code_request, client_secret="s3cret")

    _, kwargs = session.request.call_args
    assert kwargs["auth"] == aiohttp.BasicAuth("c1", "s3cret")
    assert "client_id" not in parse_qs(kwargs["data"])


@pytest.mark.asyncio
async def test_perform_token_request_oauth_error(service, code_request):
    body = {"error": "invalid_grant", "error_description": "Code expired"}
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(400, body))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_token_request(code_request)

    assert excinfo.value == TokenRequestErrors.INVALID_GRANT
    assert excinfo.value.error == "invalid_grant"
    assert excinfo.value.error_description == "Code expired"


@pytest.mark.asyncio
async def test_perform_token_request_unknown_oauth_error(service, code_request):
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(400, {"error": "weird"}))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_token_request(code_request)
    assert excinfo.value == TokenRequestErrors.OTHER
    assert excinfo.value.error == "weird"


@pytest.mark.asyncio
@pytest.mark.parametrize("body", ["Internal Server Error", "{}"])
async def test_perform_token_request_server_error(service, code_request, body):
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(500, body))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_token_request(code_request)
    assert excinfo.value == GeneralErrors.SERVER_ERROR


@pytest.mark.asyncio
async def test_perform_token_request_malformed_success_body(service, code_request):
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(200, "not json"))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_token_request(code_request)
    assert excinfo.value == GeneralErrors.JSON_DESERIALIZATION_ERROR


@pytest.mark.asyncio
async def test_perform_token_request_missing_token_type(service, code_request):
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(200, {"access_token": "at"}))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_token_request(code_request)
    assert excinfo.value == GeneralErrors.TOKEN_RESPONSE_CONSTRUCTION_ERROR


@pytest.mark.asyncio
async def test_perform_token_request_rejects_invalid_id_token(service, code_request, make_id_token, valid_claims):
    valid_claims["nonce"] = "replayed"
    payload = {"access_token": "at", "token_type": "Bearer", "id_token": make_id_token(valid_claims)}
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(200, payload))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_token_request(code_request)
    assert excinfo.value == GeneralErrors.ID_TOKEN_VALIDATION_ERROR


@pytest.mark.asyncio
async def test_perform_token_request_rejects_unparsable_id_token(service, code_request):
    payload = {"access_token": "at", "token_type": "Bearer", "id_token": "garbage"}
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(200, payload))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_token_request(code_request)
    assert excinfo.value == GeneralErrors.ID_TOKEN_PARSING_ERROR


# --- Registration ---

@pytest.fixture
def registration_request(static_config):
    return RegistrationRequest.builder(static_config, ["https://app/cb"]).build()


@pytest.mark.asyncio
async def test_perform_registration_request_success(service, registration_request):
    payload = {"client_id": "new", "client_secret": "s", "client_secret_expires_at": 0}
    session = _mock_session(201, payload)
    with patch.object(service, "_get_session", AsyncMock(return_value=session)):
        response = await service.perform_registration_request(registration_request)

    assert response.client_id == "new"
    assert response.client_secret == "s"
    args, kwargs = session.request.call_args
    assert args == ("POST", f"{ISSUER}/register")
    assert json.loads(kwargs["data"]) == {"redirect_uris": ["https://app/cb"], "application_type": "native"}


@pytest.mark.asyncio
async def test_perform_registration_request_oauth_error(service, registration_request):
    body = {"error": "invalid_redirect_uri"}
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(400, body))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_registration_request(registration_request)
    assert excinfo.value == RegistrationRequestErrors.INVALID_REDIRECT_URI


@pytest.mark.asyncio
async def test_perform_registration_request_invalid_response(service, registration_request):
    with patch.object(service, "_get_session", AsyncMock(return_value=_mock_session(201, {"client_secret": "s"}))):
        with pytest.raises(AuthorizationException) as excinfo:
            await service.perform_registration_request(registration_request)
    assert excinfo.value == GeneralErrors.INVALID_REGISTRATION_RESPONSE


@pytest.mark.asyncio
async def test_perform_registration_request_without_endpoint(service, discovery_document):
    del discovery_document["registration_endpoint"]
    config = AuthorizationServiceConfiguration.from_discovery_document(discovery_document)
    request = RegistrationRequest.builder(config, ["https://app/cb"]).build()
    with pytest.raises(ValueError):
        await service.perform_registration_request(request)


# --- Refresh ---

@pytest.fixture
def refreshable_state(static_config, clock):
    request = AuthorizationRequest.builder(static_config, "c1", "code", "https://app/cb").build()
    response = AuthorizationResponse.builder(request).set_state(request.state).set_authorization_code("abc").build()
    return AuthState().update_from_authorization(response).model_copy(update={"refresh_token": "rt"})


@pytest.mark.asyncio
async def test_refresh_tokens_if_needed_refreshes(service, refreshable_state):
    session = _mock_session(200, {"access_token": "fresh", "token_type": "Bearer", "expires_in": 3600})
    with patch.object(service, "_get_session", AsyncMock(return_value=session)):
        state, access_token, id_token = await service.refresh_tokens_if_needed(refreshable_state)

    assert access_token == "fresh"
    assert id_token is None
    assert state.refresh_token == "rt"
    assert state.access_token_expiration_time == NOW + 3600
    assert parse_qs(session.request.call_args.kwargs["data"])["grant_type"] == ["refresh_token"]


@pytest.mark.asyncio
async def test_refresh_tokens_if_needed_uses_configured_client_secret(refreshable_state, clock):
    service = AuthorizationService(Config(client={"client_id": "c1", "client_secret": "s3cret"}), clock=clock)
    session = _mock_session(200, {"access_token": "fresh", "token_type": "Bearer"})
    with patch.object(service, "_get_session", AsyncMock(return_value=session)):
        await service.refresh_tokens_if_needed(refreshable_state)

    assert session.request.call_args.kwargs["auth"] == aiohttp.BasicAuth("c1", "s3cret")


@pytest.mark.asyncio
async def test_refresh_tokens_if_needed_explicit_client_secret_wins(refreshable_state, clock):
    service = AuthorizationService(Config(client={"client_id": "c1", "client_secret": "configured"}), clock=clock)
    fake = AsyncMock(side_effect=AuthorizationException.from_template(GeneralErrors.NETWORK_ERROR))
    with patch.object(service, "perform_token_request", fake):
        with pytest.raises(AuthorizationException):
            await service.refresh_tokens_if_needed(refreshable_state, client_secret="explicit")

    assert fake.call_args.kwargs["client_secret"] == "explicit"


@pytest.mark.asyncio
async def test_refresh_tokens_if_needed_skips_fresh_tokens(service, refreshable_state):
    session = _mock_session(200, {"access_token": "fresh", "token_type": "Bearer", "expires_in": 3600})
    with patch.object(service, "_get_session", AsyncMock(return_value=session)):
        state, _, _ = await service.refresh_tokens_if_needed(refreshable_state)
        again, access_token, _ = await service.refresh_tokens_if_needed(state)

    assert again is state
    assert access_token == "fresh"
    assert session.request.call_count == 1


@pytest.mark.asyncio
async def test_refresh_tokens_if_needed_without_refresh_token(service):
    with pytest.raises(IllegalStateError):
        await service.refresh_tokens_if_needed(AuthState())


# --- Session lifecycle ---

@pytest.mark.asyncio
async def test_context_manager_closes_owned_session(app_config):
    async with AuthorizationService(app_config) as service:
        session = await service._get_session()
        assert not session.closed
    assert session.closed


@pytest.mark.asyncio
async def test_shared_session_is_not_closed(app_config):
    async with aiohttp.ClientSession() as shared:
        service = AuthorizationService(app_config, session=shared)
        await service.close_session()
        assert not shared.closed
