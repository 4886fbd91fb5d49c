"""
AuthState: an immutable snapshot of everything the client knows about its
authorization with one server.

Every transition returns a new AuthState. The host keeps a single current
reference and swaps it (see state_manager.AuthStateManager).
"""
from collections.abc import Mapping

import structlog
from pydantic import ValidationError

from ..exceptions import AuthorizationException, ErrorType, IllegalStateError
from ..models.authorization import AuthorizationResponse
from ..models.common import BasePydanticModel, GrantType
from ..models.configuration import AuthorizationServiceConfiguration
from ..models.registration import RegistrationResponse
from ..models.token import TokenRequest, TokenResponse
from ..utils.clock import Clock, default_clock
from ..utils.codec import scope_to_set
from .id_token import IdToken

logger = structlog.get_logger(__name__)

EXPIRY_TIME_TOLERANCE_SECONDS = 60.0


def _check_exactly_one(response: object, exception: AuthorizationException | None, name: str) -> None:
    if (response is None) == (exception is None):
        raise ValueError(f"exactly one of {name} or authorization exception should be non-null")


class AuthState(BasePydanticModel):
    """
    Attributes:
        scope: The scope currently granted, if known.
        refresh_token: The most recent refresh token.
        last_token_response: The most recent successful token response.
        config: Explicitly stored service configuration.
        last_registration_response: The most recent dynamic registration response.
        last_authorization_response: The most recent successful authorization response.
        authorization_exception: Sticky authorization-phase error; while set the
                                 state is not authorized.
        needs_token_refresh_override: Forces needs_token_refresh() to return True.
    """
    scope: str | None = None
    refresh_token: str | None = None
    last_token_response: TokenResponse | None = None
    config: AuthorizationServiceConfiguration | None = None
    last_registration_response: RegistrationResponse | None = None
    last_authorization_response: AuthorizationResponse | None = None
    authorization_exception: AuthorizationException | None = None
    needs_token_refresh_override: bool = False

    @classmethod
    def from_configuration(cls, config: AuthorizationServiceConfiguration) -> "AuthState":
        return cls(config=config)

    # Derived properties

    @property
    def access_token(self) -> str | None:
        if self.last_token_response is not None and self.last_token_response.access_token is not None:
            return self.last_token_response.access_token
        if self.last_authorization_response is not None:
            return self.last_authorization_response.access_token
        return None

    @property
    def access_token_expiration_time(self) -> float | None:
        if self.last_token_response is not None and self.last_token_response.access_token_expiration_time is not None:
            return self.last_token_response.access_token_expiration_time
        if self.last_authorization_response is not None:
            return self.last_authorization_response.access_token_expiration_time
        return None

    @property
    def id_token(self) -> str | None:
        if self.last_token_response is not None and self.last_token_response.id_token is not None:
            return self.last_token_response.id_token
        if self.last_authorization_response is not None:
            return self.last_authorization_response.id_token
        return None

    @property
    def parsed_id_token(self) -> IdToken | None:
        """The decoded ID token, or None when there is none or it cannot be decoded."""
        id_token = self.id_token
        if id_token is None:
            return None
        try:
            return IdToken.parse(id_token)
        except AuthorizationException:
            logger.warning("Stored ID token could not be parsed.")
            return None

    @property
    def client_secret(self) -> str | None:
        return self.last_registration_response.client_secret if self.last_registration_response else None

    @property
    def client_secret_expiration_time(self) -> int | None:
        return self.last_registration_response.client_secret_expires_at if self.last_registration_response else None

    @property
    def scope_set(self) -> set[str]:
        return scope_to_set(self.scope)

    @property
    def is_authorized(self) -> bool:
        return self.authorization_exception is None and (self.access_token is not None or self.id_token is not None)

    @property
    def authorization_service_configuration(self) -> AuthorizationServiceConfiguration | None:
        if self.last_authorization_response is not None:
            return self.last_authorization_response.request.configuration
        return self.config

    def needs_token_refresh(
        self, clock: Clock = default_clock, tolerance_seconds: float = EXPIRY_TIME_TOLERANCE_SECONDS
    ) -> bool:
        if self.needs_token_refresh_override:
            return True
        expiration_time = self.access_token_expiration_time
        if expiration_time is None:
            # no expiry time, assume the token is valid as long as there is one
            return self.access_token is None
        return expiration_time <= clock() + tolerance_seconds

    def with_needs_token_refresh(self, needs_token_refresh: bool) -> "AuthState":
        return self.model_copy(update={"needs_token_refresh_override": needs_token_refresh})

    def with_configuration(self, config: AuthorizationServiceConfiguration) -> "AuthState":
        if config == self.config:
            return self
        return self.model_copy(update={"config": config})

    def has_client_secret_expired(self, clock: Clock = default_clock) -> bool:
        if self.last_registration_response is None:
            return False
        return self.last_registration_response.has_client_secret_expired(clock)

    # Transitions

    def update_from_authorization(
        self,
        response: AuthorizationResponse | None,
        exception: AuthorizationException | None = None,
    ) -> "AuthState":
        """
        Folds the outcome of an authorization request into a new state.

        An authorization-phase exception becomes the sticky exception; any other
        exception leaves the state untouched. A successful response clears the
        sticky exception.

        Raises:
            ValueError: Unless exactly one of response and exception is given.
        """
        _check_exactly_one(response, exception, "authorization response")
        if exception is not None:
            return self._with_exception(exception)

        return self.model_copy(update={
            "last_authorization_response": response,
            "scope": response.scope if response.scope is not None else response.request.scope,
            "authorization_exception": None,
        })

    def update_from_token(
        self,
        response: TokenResponse | None,
        exception: AuthorizationException | None = None,
    ) -> "AuthState":
        """
        Folds the outcome of a token request into a new state.

        A response that omits the refresh token or the scope keeps the values
        already held (RFC 6749 section 6) instead of clearing them.

        Raises:
            ValueError: Unless exactly one of response and exception is given.
        """
        _check_exactly_one(response, exception, "token response")
        if exception is not None:
            return self._with_exception(exception)

        return self.model_copy(update={
            "last_token_response": response,
            "refresh_token": response.refresh_token if response.refresh_token is not None else self.refresh_token,
            "scope": response.scope if response.scope is not None else self.scope,
            "needs_token_refresh_override": False,
        })

    def update_from_registration(self, response: RegistrationResponse) -> "AuthState":
        return self.model_copy(update={
            "config": self.authorization_service_configuration,
            "last_registration_response": response,
        })

    def _with_exception(self, exception: AuthorizationException) -> "AuthState":
        if exception.type == ErrorType.OAUTH_AUTHORIZATION:
            if self.authorization_exception is not None:
                logger.warning("Replacing existing authorization exception.", code=exception.code)
            return self.model_copy(update={"authorization_exception": exception})
        logger.debug("Transient error not recorded in auth state.", error_type=int(exception.type), code=exception.code)
        return self

    def create_token_refresh(self, additional_parameters: Mapping[str, str] | None = None) -> TokenRequest:
        """
        Creates a refresh_token grant request for the current refresh token.

        Raises:
            IllegalStateError: If there is no refresh token or no authorization
                               response to take the client id and configuration from.
        """
        if self.refresh_token is None:
            raise IllegalStateError("No refresh token available for refresh request")
        if self.last_authorization_response is None:
            raise IllegalStateError("No authorization configuration available for refresh request")

        request = self.last_authorization_response.request
        return (
            TokenRequest.builder(request.configuration, request.client_id)
            .set_grant_type(GrantType.REFRESH_TOKEN)
            .set_scope(self.scope)
            .set_refresh_token(self.refresh_token)
            .set_additional_parameters(additional_parameters)
            .build()
        )

    def logout(self) -> "AuthState":
        return AuthState()

    # Persistence

    @classmethod
    def restore(cls, serialized: str | None) -> "AuthState":
        """
        Reads a persisted state, treating absent or corrupted data as no state.
        """
        if not serialized:
            return cls()
        try:
            return cls.from_json(serialized)
        except (ValidationError, ValueError) as e:
            logger.warning("Discarding unreadable persisted auth state.", error=str(e))
            return cls()
