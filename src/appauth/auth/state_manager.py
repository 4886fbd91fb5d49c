"""
Holds the process-wide current AuthState and persists every new snapshot.
"""
import asyncio
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from ..exceptions import AuthorizationException
from ..models.authorization import AuthorizationRequest, AuthorizationResponse
from ..models.end_session import EndSessionRequest, request_from_json, request_to_json
from ..models.registration import RegistrationResponse
from ..models.token import TokenResponse
from .auth_state import AuthState
from .state_store import BaseStateStore

logger = structlog.get_logger(__name__)

AUTH_STATE_KEY = "auth_state"
PENDING_REQUEST_KEY = "pending_request"


class AuthStateManager:
    """
    Serializes reads and replacements of the current AuthState.

    AuthState values are immutable; the manager swaps its single reference
    under an asyncio.Lock so that concurrent authorization and refresh flows
    cannot overwrite each other's snapshots. Every installed snapshot is
    written to the state store.
    """

    def __init__(self, state_store: BaseStateStore, key: str = AUTH_STATE_KEY):
        self._store = state_store
        self._key = key
        self._current: Optional[AuthState] = None
        self._lock = asyncio.Lock()
        self.logger = logger.bind(state_key=key)

    async def _read_current(self) -> AuthState:
        if self._current is None:
            self._current = AuthState.restore(await self._store.read(self._key))
        return self._current

    async def _install(self, state: AuthState) -> AuthState:
        await self._store.write(self._key, state.to_json())
        self._current = state
        return state

    async def current(self) -> AuthState:
        async with self._lock:
            return await self._read_current()

    async def replace(self, state: AuthState) -> AuthState:
        async with self._lock:
            return await self._install(state)

    async def compare_and_set(self, expected: AuthState, new: AuthState) -> bool:
        """
        Installs `new` only if the current snapshot is still `expected`.

        Returns:
            True if `new` was installed, False if another update won the race.
        """
        async with self._lock:
            current = await self._read_current()
            if current is not expected and current != expected:
                self.logger.debug("Auth state changed concurrently, not replacing.")
                return False
            await self._install(new)
            return True

    async def update(self, transition: Callable[[AuthState], AuthState]) -> AuthState:
        """Applies `transition` to the current snapshot and installs the result atomically."""
        async with self._lock:
            current = await self._read_current()
            new_state = transition(current)
            if new_state is current:
                return current
            return await self._install(new_state)

    async def update_after_authorization(
        self,
        response: Optional[AuthorizationResponse],
        exception: Optional[AuthorizationException] = None,
    ) -> AuthState:
        return await self.update(lambda state: state.update_from_authorization(response, exception))

    async def update_after_token_response(
        self,
        response: Optional[TokenResponse],
        exception: Optional[AuthorizationException] = None,
    ) -> AuthState:
        return await self.update(lambda state: state.update_from_token(response, exception))

    async def update_after_registration(
        self,
        response: Optional[RegistrationResponse],
        exception: Optional[AuthorizationException] = None,
    ) -> AuthState:
        """A registration error is not recorded; the state stays as it is."""
        if exception is not None:
            self.logger.info("Registration failed, auth state unchanged.", code=exception.code)
            return await self.current()
        if response is None:
            raise ValueError("exactly one of registration response or authorization exception should be non-null")
        return await self.update(lambda state: state.update_from_registration(response))

    async def logout(self) -> AuthState:
        """Discards everything and installs an empty state."""
        async with self._lock:
            await self._store.delete(PENDING_REQUEST_KEY)
            return await self._install(AuthState())

    async def save_pending_request(self, request: AuthorizationRequest | EndSessionRequest) -> None:
        """Remembers the request the browser was sent with until its redirect comes back."""
        await self._store.write(PENDING_REQUEST_KEY, request_to_json(request))

    async def load_pending_request(self) -> AuthorizationRequest | EndSessionRequest | None:
        serialized = await self._store.read(PENDING_REQUEST_KEY)
        if not serialized:
            return None
        try:
            return request_from_json(serialized)
        except (ValidationError, ValueError) as e:
            self.logger.warning("Discarding unreadable pending request.", error=str(e))
            return None

    async def clear_pending_request(self) -> None:
        await self._store.delete(PENDING_REQUEST_KEY)
