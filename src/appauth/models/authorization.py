"""
Authorization endpoint messages (RFC 6749 section 4.1, OpenID Connect Core 3.1.2).
"""
import json
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import Field, model_validator

from ..auth.pkce import (
    check_code_verifier,
    code_verifier_challenge_method as runtime_challenge_method,
    derive_code_verifier_challenge,
    generate_random_code_verifier,
)
from ..exceptions import IllegalStateError
from ..utils.clock import Clock, default_clock
from ..utils.codec import (
    append_query_parameters,
    check_additional_params,
    generate_random_state,
    normalize_scope,
    query_parameters,
    scope_to_set,
    set_to_scope,
)
from .common import BasePydanticModel, GrantType
from .configuration import AuthorizationServiceConfiguration
from .token import TokenRequest

PARAM_CLIENT_ID = "client_id"
PARAM_CODE_CHALLENGE = "code_challenge"
PARAM_CODE_CHALLENGE_METHOD = "code_challenge_method"
PARAM_DISPLAY = "display"
PARAM_LOGIN_HINT = "login_hint"
PARAM_PROMPT = "prompt"
PARAM_UI_LOCALES = "ui_locales"
PARAM_REDIRECT_URI = "redirect_uri"
PARAM_RESPONSE_MODE = "response_mode"
PARAM_RESPONSE_TYPE = "response_type"
PARAM_SCOPE = "scope"
PARAM_STATE = "state"
PARAM_NONCE = "nonce"
PARAM_CLAIMS = "claims"
PARAM_CLAIMS_LOCALES = "claims_locales"

AUTHORIZATION_REQUEST_RESERVED_PARAMS = frozenset({
    PARAM_CLIENT_ID,
    PARAM_CODE_CHALLENGE,
    PARAM_CODE_CHALLENGE_METHOD,
    PARAM_DISPLAY,
    PARAM_LOGIN_HINT,
    PARAM_PROMPT,
    PARAM_UI_LOCALES,
    PARAM_REDIRECT_URI,
    PARAM_RESPONSE_MODE,
    PARAM_RESPONSE_TYPE,
    PARAM_SCOPE,
    PARAM_STATE,
    PARAM_NONCE,
    PARAM_CLAIMS,
    PARAM_CLAIMS_LOCALES,
})

KEY_TOKEN_TYPE = "token_type"
KEY_AUTHORIZATION_CODE = "code"
KEY_ACCESS_TOKEN = "access_token"
KEY_EXPIRES_IN = "expires_in"
KEY_ID_TOKEN = "id_token"

AUTHORIZATION_RESPONSE_RESERVED_PARAMS = frozenset({
    PARAM_STATE,
    KEY_TOKEN_TYPE,
    KEY_AUTHORIZATION_CODE,
    KEY_ACCESS_TOKEN,
    KEY_EXPIRES_IN,
    KEY_ID_TOKEN,
    PARAM_SCOPE,
})

DISPLAY_PAGE = "page"
DISPLAY_POPUP = "popup"
DISPLAY_TOUCH = "touch"
DISPLAY_WAP = "wap"

PROMPT_NONE = "none"
PROMPT_LOGIN = "login"
PROMPT_CONSENT = "consent"
PROMPT_SELECT_ACCOUNT = "select_account"

RESPONSE_MODE_QUERY = "query"
RESPONSE_MODE_FRAGMENT = "fragment"

# Token type returned by servers issuing bearer tokens.
TOKEN_TYPE_BEARER = "Bearer"


class AuthorizationRequest(BasePydanticModel):
    """
    An authorization request. Use AuthorizationRequest.builder() to create one
    with a generated state, nonce and PKCE code verifier.
    """
    configuration: AuthorizationServiceConfiguration
    client_id: str
    redirect_uri: str
    response_type: str
    display: str | None = None
    login_hint: str | None = None
    prompt: str | None = None
    ui_locales: str | None = None
    scope: str | None = None
    state: str | None = None
    nonce: str | None = None
    code_verifier: str | None = None
    code_verifier_challenge: str | None = None
    code_verifier_challenge_method: str | None = None
    response_mode: str | None = None
    claims: dict[str, Any] | None = None
    claims_locales: str | None = None
    additional_parameters: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_invariants(self) -> "AuthorizationRequest":
        if not self.client_id:
            raise ValueError("client ID cannot be null or empty")
        if not self.response_type:
            raise ValueError("expected response type cannot be null or empty")
        if self.code_verifier is not None:
            check_code_verifier(self.code_verifier)
            if not self.code_verifier_challenge or not self.code_verifier_challenge_method:
                raise ValueError("code verifier challenge and method must be specified with a code verifier")
        elif self.code_verifier_challenge is not None or self.code_verifier_challenge_method is not None:
            raise ValueError("code verifier challenge and method require a code verifier")
        check_additional_params(self.additional_parameters, AUTHORIZATION_REQUEST_RESERVED_PARAMS)
        return self

    @classmethod
    def builder(
        cls,
        configuration: AuthorizationServiceConfiguration,
        client_id: str,
        response_type: str,
        redirect_uri: str,
    ) -> "AuthorizationRequestBuilder":
        return AuthorizationRequestBuilder(configuration, client_id, response_type, redirect_uri)

    @property
    def scope_set(self) -> set[str]:
        return scope_to_set(self.scope)

    @property
    def prompt_values(self) -> set[str]:
        return scope_to_set(self.prompt)

    @property
    def ui_locales_values(self) -> set[str]:
        return scope_to_set(self.ui_locales)

    def to_uri(self) -> str:
        """Produces the authorization endpoint URI carrying this request as query parameters."""
        params: list[tuple[str, str | None]] = [
            (PARAM_CLIENT_ID, self.client_id),
            (PARAM_REDIRECT_URI, self.redirect_uri),
            (PARAM_RESPONSE_TYPE, self.response_type),
            (PARAM_SCOPE, self.scope),
            (PARAM_STATE, self.state),
            (PARAM_NONCE, self.nonce),
        ]
        if self.code_verifier is not None:
            params.append((PARAM_CODE_CHALLENGE, self.code_verifier_challenge))
            params.append((PARAM_CODE_CHALLENGE_METHOD, self.code_verifier_challenge_method))
        params.extend([
            (PARAM_DISPLAY, self.display),
            (PARAM_LOGIN_HINT, self.login_hint),
            (PARAM_PROMPT, self.prompt),
            (PARAM_UI_LOCALES, self.ui_locales),
            (PARAM_RESPONSE_MODE, self.response_mode),
            (PARAM_CLAIMS, json.dumps(self.claims) if self.claims is not None else None),
            (PARAM_CLAIMS_LOCALES, self.claims_locales),
        ])
        params.extend(self.additional_parameters.items())
        return append_query_parameters(self.configuration.authorization_endpoint, params)


class AuthorizationRequestBuilder:
    """Fluent builder for AuthorizationRequest. Each setter validates its own argument."""

    def __init__(
        self,
        configuration: AuthorizationServiceConfiguration,
        client_id: str,
        response_type: str,
        redirect_uri: str,
    ):
        self._fields: dict[str, Any] = {}
        self.set_authorization_service_configuration(configuration)
        self.set_client_id(client_id)
        self.set_response_type(response_type)
        self.set_redirect_uri(redirect_uri)
        self.set_state(generate_random_state())
        self.set_nonce(generate_random_state())
        self.set_code_verifier(generate_random_code_verifier())
        self._fields["additional_parameters"] = {}

    def set_authorization_service_configuration(
        self, configuration: AuthorizationServiceConfiguration
    ) -> "AuthorizationRequestBuilder":
        if configuration is None:
            raise ValueError("configuration cannot be null")
        self._fields["configuration"] = configuration
        return self

    def set_client_id(self, client_id: str) -> "AuthorizationRequestBuilder":
        if not client_id:
            raise ValueError("client ID cannot be null or empty")
        self._fields["client_id"] = client_id
        return self

    def set_response_type(self, response_type: str) -> "AuthorizationRequestBuilder":
        if not response_type:
            raise ValueError("expected response type cannot be null or empty")
        self._fields["response_type"] = response_type
        return self

    def set_redirect_uri(self, redirect_uri: str) -> "AuthorizationRequestBuilder":
        if not redirect_uri:
            raise ValueError("redirect URI cannot be null or empty")
        self._fields["redirect_uri"] = redirect_uri
        return self

    def set_display(self, display: str | None) -> "AuthorizationRequestBuilder":
        self._fields["display"] = _non_empty_or_none(display, "display")
        return self

    def set_login_hint(self, login_hint: str | None) -> "AuthorizationRequestBuilder":
        self._fields["login_hint"] = _non_empty_or_none(login_hint, "login hint")
        return self

    def set_prompt(self, prompt: str | None) -> "AuthorizationRequestBuilder":
        self._fields["prompt"] = _non_empty_or_none(prompt, "prompt")
        return self

    def set_prompt_values(self, prompt_values: Iterable[str] | None) -> "AuthorizationRequestBuilder":
        self._fields["prompt"] = set_to_scope(prompt_values)
        return self

    def set_ui_locales(self, ui_locales: str | None) -> "AuthorizationRequestBuilder":
        self._fields["ui_locales"] = _non_empty_or_none(ui_locales, "ui_locales")
        return self

    def set_ui_locales_values(self, ui_locales: Iterable[str] | None) -> "AuthorizationRequestBuilder":
        self._fields["ui_locales"] = set_to_scope(ui_locales)
        return self

    def set_scope(self, scope: str | None) -> "AuthorizationRequestBuilder":
        self._fields["scope"] = normalize_scope(scope)
        return self

    def set_scopes(self, scopes: Iterable[str] | None) -> "AuthorizationRequestBuilder":
        self._fields["scope"] = set_to_scope(scopes)
        return self

    def set_state(self, state: str | None) -> "AuthorizationRequestBuilder":
        self._fields["state"] = _non_empty_or_none(state, "state")
        return self

    def set_nonce(self, nonce: str | None) -> "AuthorizationRequestBuilder":
        self._fields["nonce"] = _non_empty_or_none(nonce, "nonce")
        return self

    def set_code_verifier(
        self,
        code_verifier: str | None,
        code_verifier_challenge: str | None = None,
        code_verifier_challenge_method: str | None = None,
    ) -> "AuthorizationRequestBuilder":
        """
        Sets the PKCE code verifier. With only a verifier given, the challenge
        and method are derived from it; None removes PKCE from the request.

        Raises:
            ValueError: If the verifier breaks RFC 7636 rules, or a challenge is
                        given without its method (or without a verifier).
        """
        if code_verifier is None:
            if code_verifier_challenge is not None or code_verifier_challenge_method is not None:
                raise ValueError("code verifier challenge and method must be null if the code verifier is null")
            self._fields["code_verifier"] = None
            self._fields["code_verifier_challenge"] = None
            self._fields["code_verifier_challenge_method"] = None
            return self

        check_code_verifier(code_verifier)
        if code_verifier_challenge is None and code_verifier_challenge_method is None:
            code_verifier_challenge = derive_code_verifier_challenge(code_verifier)
            code_verifier_challenge_method = runtime_challenge_method()
        elif not code_verifier_challenge or not code_verifier_challenge_method:
            raise ValueError("code verifier challenge and method must both be specified")
        self._fields["code_verifier"] = code_verifier
        self._fields["code_verifier_challenge"] = code_verifier_challenge
        self._fields["code_verifier_challenge_method"] = code_verifier_challenge_method
        return self

    def set_response_mode(self, response_mode: str | None) -> "AuthorizationRequestBuilder":
        self._fields["response_mode"] = _non_empty_or_none(response_mode, "response mode")
        return self

    def set_claims(self, claims: Mapping[str, Any] | None) -> "AuthorizationRequestBuilder":
        self._fields["claims"] = dict(claims) if claims is not None else None
        return self

    def set_claims_locales(self, claims_locales: str | None) -> "AuthorizationRequestBuilder":
        self._fields["claims_locales"] = _non_empty_or_none(claims_locales, "claims locales")
        return self

    def set_additional_parameters(self, params: Mapping[str, str] | None) -> "AuthorizationRequestBuilder":
        self._fields["additional_parameters"] = check_additional_params(params, AUTHORIZATION_REQUEST_RESERVED_PARAMS)
        return self

    def build(self) -> AuthorizationRequest:
        return AuthorizationRequest(**self._fields)


def _non_empty_or_none(value: str | None, name: str) -> str | None:
    if value is not None and not value:
        raise ValueError(f"{name} must be null or not empty")
    return value


class AuthorizationResponse(BasePydanticModel):
    """
    A successful authorization response, parsed from the redirect URI.
    The originating request is carried along for the code exchange.
    """
    request: AuthorizationRequest
    state: str | None = None
    token_type: str | None = None
    authorization_code: str | None = None
    access_token: str | None = None
    access_token_expiration_time: float | None = Field(
        None, description="Absolute expiry of access_token in seconds since the epoch."
    )
    id_token: str | None = None
    scope: str | None = None
    additional_parameters: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_additional_params(self) -> "AuthorizationResponse":
        check_additional_params(self.additional_parameters, AUTHORIZATION_RESPONSE_RESERVED_PARAMS)
        return self

    @classmethod
    def builder(cls, request: AuthorizationRequest) -> "AuthorizationResponseBuilder":
        return AuthorizationResponseBuilder(request)

    @classmethod
    def from_uri(
        cls, request: AuthorizationRequest, uri: str, clock: Clock = default_clock
    ) -> "AuthorizationResponse":
        """Reads the response parameters from a redirect URI. The state is not compared here."""
        return cls.builder(request).from_uri(uri, clock).build()

    @property
    def scope_set(self) -> set[str]:
        return scope_to_set(self.scope)

    def has_access_token_expired(self, clock: Clock = default_clock) -> bool:
        return self.access_token_expiration_time is not None and clock() > self.access_token_expiration_time

    def create_token_exchange_request(self, additional_parameters: Mapping[str, str] | None = None) -> TokenRequest:
        """
        Creates the follow-up request exchanging the authorization code for tokens.

        Raises:
            IllegalStateError: If this response carries no authorization code.
        """
        if self.authorization_code is None:
            raise IllegalStateError("authorizationCode not available for exchange request")
        return (
            TokenRequest.builder(self.request.configuration, self.request.client_id)
            .set_grant_type(GrantType.AUTHORIZATION_CODE)
            .set_redirect_uri(self.request.redirect_uri)
            .set_code_verifier(self.request.code_verifier)
            .set_authorization_code(self.authorization_code)
            .set_nonce(self.request.nonce)
            .set_additional_parameters(additional_parameters)
            .build()
        )


class AuthorizationResponseBuilder:
    def __init__(self, request: AuthorizationRequest):
        if request is None:
            raise ValueError("authorization request cannot be null")
        self._request = request
        self._fields: dict[str, Any] = {"additional_parameters": {}}

    def from_uri(self, uri: str, clock: Clock = default_clock) -> "AuthorizationResponseBuilder":
        params = {key: value for key, value in query_parameters(uri).items() if value}
        self.set_state(params.get(PARAM_STATE))
        self.set_token_type(params.get(KEY_TOKEN_TYPE))
        self.set_authorization_code(params.get(KEY_AUTHORIZATION_CODE))
        self.set_access_token(params.get(KEY_ACCESS_TOKEN))
        expires_in = params.get(KEY_EXPIRES_IN)
        if expires_in is not None:
            try:
                self.set_access_token_expires_in(float(expires_in), clock)
            except ValueError:
                self.set_access_token_expiration_time(None)
        self.set_id_token(params.get(KEY_ID_TOKEN))
        self.set_scope(params.get(PARAM_SCOPE))
        self._fields["additional_parameters"] = {
            key: value for key, value in params.items() if key not in AUTHORIZATION_RESPONSE_RESERVED_PARAMS
        }
        return self

    def set_state(self, state: str | None) -> "AuthorizationResponseBuilder":
        self._fields["state"] = _non_empty_or_none(state, "state")
        return self

    def set_token_type(self, token_type: str | None) -> "AuthorizationResponseBuilder":
        self._fields["token_type"] = _non_empty_or_none(token_type, "tokenType")
        return self

    def set_authorization_code(self, code: str | None) -> "AuthorizationResponseBuilder":
        self._fields["authorization_code"] = _non_empty_or_none(code, "authorizationCode")
        return self

    def set_access_token(self, access_token: str | None) -> "AuthorizationResponseBuilder":
        self._fields["access_token"] = _non_empty_or_none(access_token, "accessToken")
        return self

    def set_access_token_expires_in(
        self, expires_in: float | None, clock: Clock = default_clock
    ) -> "AuthorizationResponseBuilder":
        self._fields["access_token_expiration_time"] = None if expires_in is None else clock() + expires_in
        return self

    def set_access_token_expiration_time(self, expiration_time: float | None) -> "AuthorizationResponseBuilder":
        self._fields["access_token_expiration_time"] = expiration_time
        return self

    def set_id_token(self, id_token: str | None) -> "AuthorizationResponseBuilder":
        self._fields["id_token"] = _non_empty_or_none(id_token, "idToken")
        return self

    def set_scope(self, scope: str | None) -> "AuthorizationResponseBuilder":
        self._fields["scope"] = normalize_scope(scope) if scope else None
        return self

    def set_scopes(self, scopes: Iterable[str] | None) -> "AuthorizationResponseBuilder":
        self._fields["scope"] = set_to_scope(scopes)
        return self

    def set_additional_parameters(self, params: Mapping[str, str] | None) -> "AuthorizationResponseBuilder":
        self._fields["additional_parameters"] = check_additional_params(params, AUTHORIZATION_RESPONSE_RESERVED_PARAMS)
        return self

    def build(self) -> AuthorizationResponse:
        return AuthorizationResponse(request=self._request, **self._fields)
