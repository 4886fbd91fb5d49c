"""
Unit tests for AuthStateManager.
"""
import asyncio

import pytest

from appauth.auth.auth_state import AuthState
from appauth.auth.state_manager import AUTH_STATE_KEY, PENDING_REQUEST_KEY, AuthStateManager
from appauth.auth.state_store import InMemoryStateStore
from appauth.exceptions import AuthorizationRequestErrors, RegistrationRequestErrors
from appauth.models.authorization import AuthorizationRequest, AuthorizationResponse
from appauth.models.end_session import EndSessionRequest
from appauth.models.registration import RegistrationRequest, RegistrationResponse


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def manager(store):
    return AuthStateManager(store)


@pytest.fixture
def authorization_request(static_config):
    return AuthorizationRequest.builder(static_config, "c1", "code", "https://app/cb").build()


@pytest.fixture
def authorization_response(authorization_request):
    return (
        AuthorizationResponse.builder(authorization_request)
        .set_state(authorization_request.state)
        .set_authorization_code("abc")
        .set_access_token("at")
        .build()
    )


@pytest.mark.asyncio
async def test_current_starts_empty(manager):
    assert await manager.current() == AuthState()


@pytest.mark.asyncio
async def test_current_restores_persisted_state(store, static_config):
    await store.write(AUTH_STATE_KEY, AuthState.from_configuration(static_config).to_json())
    assert (await AuthStateManager(store).current()).config == static_config


@pytest.mark.asyncio
async def test_replace_persists(manager, store, static_config):
    state = AuthState.from_configuration(static_config)
    assert await manager.replace(state) is state
    assert AuthState.from_json(await store.read(AUTH_STATE_KEY)) == state


@pytest.mark.asyncio
async def test_update_after_authorization(manager, store, authorization_response):
    state = await manager.update_after_authorization(authorization_response)
    assert state.is_authorized
    assert await manager.current() is state
    assert AuthState.from_json(await store.read(AUTH_STATE_KEY)).access_token == "at"


@pytest.mark.asyncio
async def test_update_after_authorization_error_is_sticky(manager, authorization_response):
    await manager.update_after_authorization(authorization_response)
    state = await manager.update_after_authorization(None, AuthorizationRequestErrors.ACCESS_DENIED)
    assert not state.is_authorized
    assert state.authorization_exception == AuthorizationRequestErrors.ACCESS_DENIED


@pytest.mark.asyncio
async def test_update_without_change_does_not_write(manager, store):
    state = await manager.update(lambda current: current)
    assert state == AuthState()
    assert await store.read(AUTH_STATE_KEY) is None


@pytest.mark.asyncio
async def test_compare_and_set(manager, static_config, authorization_response):
    original = await manager.current()
    configured = original.with_configuration(static_config)

    assert await manager.compare_and_set(original, configured)
    assert await manager.current() is configured

    # A stale snapshot loses.
    stale_update = original.update_from_authorization(authorization_response)
    assert not await manager.compare_and_set(original, stale_update)
    assert await manager.current() is configured


@pytest.mark.asyncio
async def test_concurrent_updates_are_serialized(manager):
    async def bump(_):
        await manager.update(lambda state: state.model_copy(update={"scope": (state.scope or "") + "x"}))

    await asyncio.gather(*(bump(i) for i in range(10)))
    assert (await manager.current()).scope == "x" * 10


@pytest.mark.asyncio
async def test_update_after_registration(manager, static_config):
    request = RegistrationRequest.builder(static_config, ["https://app/cb"]).build()
    response = RegistrationResponse.from_wire(request, {"client_id": "c2"})

    state = await manager.update_after_registration(response)
    assert state.last_registration_response.client_id == "c2"

    unchanged = await manager.update_after_registration(None, RegistrationRequestErrors.INVALID_REDIRECT_URI)
    assert unchanged is state

    with pytest.raises(ValueError):
        await manager.update_after_registration(None)


@pytest.mark.asyncio
async def test_pending_request_round_trip(manager, store, authorization_request, static_config):
    assert await manager.load_pending_request() is None

    await manager.save_pending_request(authorization_request)
    assert await manager.load_pending_request() == authorization_request

    end_session = EndSessionRequest.builder(static_config).build()
    await manager.save_pending_request(end_session)
    assert await manager.load_pending_request() == end_session

    await manager.clear_pending_request()
    assert await store.read(PENDING_REQUEST_KEY) is None


@pytest.mark.asyncio
async def test_unreadable_pending_request_is_discarded(manager, store):
    await store.write(PENDING_REQUEST_KEY, '{"type": "authorization", "request": {"client_id": "c1"}}')
    assert await manager.load_pending_request() is None

    await store.write(PENDING_REQUEST_KEY, "not json")
    assert await manager.load_pending_request() is None


@pytest.mark.asyncio
async def test_logout(manager, store, authorization_request, authorization_response):
    await manager.save_pending_request(authorization_request)
    await manager.update_after_authorization(authorization_response)

    state = await manager.logout()

    assert state == AuthState()
    assert not (await manager.current()).is_authorized
    assert await store.read(PENDING_REQUEST_KEY) is None
