"""
Token endpoint messages (RFC 6749 sections 4.1.3, 5.1 and 6).
"""
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import Field, model_validator

from ..auth.pkce import check_code_verifier
from ..utils.clock import Clock, default_clock
from ..utils.codec import check_additional_params, normalize_scope, scope_to_set, set_to_scope
from .common import BasePydanticModel, GrantType
from .configuration import AuthorizationServiceConfiguration

PARAM_CLIENT_ID = "client_id"
PARAM_CODE = "code"
PARAM_CODE_VERIFIER = "code_verifier"
PARAM_GRANT_TYPE = "grant_type"
PARAM_REDIRECT_URI = "redirect_uri"
PARAM_REFRESH_TOKEN = "refresh_token"
PARAM_SCOPE = "scope"

TOKEN_REQUEST_RESERVED_PARAMS = frozenset({
    PARAM_CLIENT_ID,
    PARAM_CODE,
    PARAM_CODE_VERIFIER,
    PARAM_GRANT_TYPE,
    PARAM_REDIRECT_URI,
    PARAM_REFRESH_TOKEN,
    PARAM_SCOPE,
})

KEY_TOKEN_TYPE = "token_type"
KEY_ACCESS_TOKEN = "access_token"
KEY_EXPIRES_IN = "expires_in"
KEY_EXPIRES_AT = "expires_at"
KEY_ID_TOKEN = "id_token"
KEY_REFRESH_TOKEN = "refresh_token"
KEY_SCOPE = "scope"

TOKEN_RESPONSE_RESERVED_PARAMS = frozenset({
    KEY_TOKEN_TYPE,
    KEY_ACCESS_TOKEN,
    KEY_EXPIRES_IN,
    KEY_EXPIRES_AT,
    KEY_ID_TOKEN,
    KEY_REFRESH_TOKEN,
    KEY_SCOPE,
})


class TokenRequest(BasePydanticModel):
    """
    A request to the token endpoint.

    The grant type is inferred when omitted: an authorization code implies
    `authorization_code`, a refresh token implies `refresh_token`.
    """
    configuration: AuthorizationServiceConfiguration
    client_id: str
    grant_type: str
    nonce: str | None = None
    redirect_uri: str | None = None
    scope: str | None = None
    authorization_code: str | None = None
    refresh_token: str | None = None
    code_verifier: str | None = None
    additional_parameters: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _infer_grant_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("grant_type"):
            data = dict(data)
            if data.get("authorization_code") is not None:
                data["grant_type"] = GrantType.AUTHORIZATION_CODE.value
            elif data.get("refresh_token") is not None:
                data["grant_type"] = GrantType.REFRESH_TOKEN.value
            else:
                raise ValueError("grant type not specified and cannot be inferred")
        return data

    @model_validator(mode="after")
    def _check_grant_requirements(self) -> "TokenRequest":
        if not self.client_id:
            raise ValueError("clientId cannot be null or empty")
        if self.grant_type == GrantType.AUTHORIZATION_CODE.value:
            if self.authorization_code is None:
                raise ValueError("authorization code must be specified for grant_type authorization_code")
            if self.redirect_uri is None:
                raise ValueError("redirect URI must be specified for grant_type authorization_code")
        if self.grant_type == GrantType.REFRESH_TOKEN.value and self.refresh_token is None:
            raise ValueError("refresh token must be specified for grant_type refresh_token")
        if self.code_verifier is not None:
            check_code_verifier(self.code_verifier)
        check_additional_params(self.additional_parameters, TOKEN_REQUEST_RESERVED_PARAMS)
        return self

    @classmethod
    def builder(cls, configuration: AuthorizationServiceConfiguration, client_id: str) -> "TokenRequestBuilder":
        return TokenRequestBuilder(configuration, client_id)

    @property
    def scope_set(self) -> set[str]:
        return scope_to_set(self.scope)

    def request_parameters(self, include_client_id: bool = True) -> dict[str, str]:
        """
        The form parameters to POST to the token endpoint.

        Args:
            include_client_id: False when the client authenticates with HTTP
                               Basic and must not repeat its id in the body.
        """
        params: dict[str, str | None] = {
            PARAM_CLIENT_ID: self.client_id if include_client_id else None,
            PARAM_GRANT_TYPE: self.grant_type,
            PARAM_SCOPE: self.scope,
            PARAM_CODE: self.authorization_code,
            PARAM_REDIRECT_URI: self.redirect_uri,
            PARAM_REFRESH_TOKEN: self.refresh_token,
            PARAM_CODE_VERIFIER: self.code_verifier,
        }
        result = {key: value for key, value in params.items() if value is not None}
        result.update(self.additional_parameters)
        return result


class TokenRequestBuilder:
    def __init__(self, configuration: AuthorizationServiceConfiguration, client_id: str):
        if configuration is None:
            raise ValueError("configuration cannot be null")
        if not client_id:
            raise ValueError("clientId cannot be null or empty")
        self._fields: dict[str, Any] = {
            "configuration": configuration,
            "client_id": client_id,
            "additional_parameters": {},
        }

    def set_client_id(self, client_id: str) -> "TokenRequestBuilder":
        if not client_id:
            raise ValueError("clientId cannot be null or empty")
        self._fields["client_id"] = client_id
        return self

    def set_nonce(self, nonce: str | None) -> "TokenRequestBuilder":
        # An empty nonce is treated as absent.
        self._fields["nonce"] = nonce or None
        return self

    def set_grant_type(self, grant_type: GrantType | str | None) -> "TokenRequestBuilder":
        if grant_type is not None and not grant_type:
            raise ValueError("grantType cannot be empty")
        self._fields["grant_type"] = grant_type.value if isinstance(grant_type, GrantType) else grant_type
        return self

    def set_redirect_uri(self, redirect_uri: str | None) -> "TokenRequestBuilder":
        if redirect_uri is not None and not redirect_uri:
            raise ValueError("redirectUri cannot be empty")
        self._fields["redirect_uri"] = redirect_uri
        return self

    def set_scope(self, scope: str | None) -> "TokenRequestBuilder":
        self._fields["scope"] = normalize_scope(scope) if scope else None
        return self

    def set_scopes(self, scopes: Iterable[str] | None) -> "TokenRequestBuilder":
        self._fields["scope"] = set_to_scope(scopes)
        return self

    def set_authorization_code(self, code: str | None) -> "TokenRequestBuilder":
        if code is not None and not code:
            raise ValueError("authorization code must not be empty")
        self._fields["authorization_code"] = code
        return self

    def set_refresh_token(self, refresh_token: str | None) -> "TokenRequestBuilder":
        if refresh_token is not None and not refresh_token:
            raise ValueError("refresh token cannot be empty if defined")
        self._fields["refresh_token"] = refresh_token
        return self

    def set_code_verifier(self, code_verifier: str | None) -> "TokenRequestBuilder":
        if code_verifier is not None:
            check_code_verifier(code_verifier)
        self._fields["code_verifier"] = code_verifier
        return self

    def set_additional_parameters(self, params: Mapping[str, str] | None) -> "TokenRequestBuilder":
        self._fields["additional_parameters"] = check_additional_params(params, TOKEN_REQUEST_RESERVED_PARAMS)
        return self

    def build(self) -> TokenRequest:
        """
        Raises:
            ValueError: If the grant type cannot be inferred, or the fields it
                        requires (code and redirect URI, or refresh token) are missing.
        """
        return TokenRequest(**self._fields)


def _optional_str(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _optional_number(payload: Mapping[str, Any], key: str) -> float | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{key} must be a number")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return float(value)
    raise ValueError(f"{key} must be a number")


class TokenResponse(BasePydanticModel):
    """
    A successful token endpoint response. The access token expiry is fixed
    at construction time as an absolute timestamp in seconds.
    """
    request: TokenRequest
    token_type: str | None = None
    access_token: str | None = None
    access_token_expiration_time: float | None = None
    id_token: str | None = None
    refresh_token: str | None = None
    scope: str | None = None
    additional_parameters: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_additional_params(self) -> "TokenResponse":
        check_additional_params(self.additional_parameters, TOKEN_RESPONSE_RESERVED_PARAMS)
        return self

    @property
    def scope_set(self) -> set[str]:
        return scope_to_set(self.scope)

    @classmethod
    def from_wire(
        cls, request: TokenRequest, payload: Mapping[str, Any], clock: Clock = default_clock
    ) -> "TokenResponse":
        """
        Builds a response from the JSON object returned by the token endpoint.

        `expires_at` (absolute) takes precedence over `expires_in` (relative
        to `clock`). Unknown members with scalar values are kept as
        additional parameters.

        Raises:
            ValueError: If a known member has the wrong type, or `token_type` is missing.
        """
        token_type = _optional_str(payload, KEY_TOKEN_TYPE)
        if not token_type:
            raise ValueError("token_type is required in a token response")
        expires_at = _optional_number(payload, KEY_EXPIRES_AT)
        expires_in = _optional_number(payload, KEY_EXPIRES_IN)
        if expires_at is not None:
            expiration_time = expires_at
        elif expires_in is not None:
            expiration_time = clock() + expires_in
        else:
            expiration_time = None
        scope = _optional_str(payload, KEY_SCOPE)

        additional: dict[str, str] = {}
        for key, value in payload.items():
            if key in TOKEN_RESPONSE_RESERVED_PARAMS or value is None or isinstance(value, (dict, list)):
                continue
            additional[key] = value if isinstance(value, str) else str(value)

        return cls(
            request=request,
            token_type=token_type,
            access_token=_optional_str(payload, KEY_ACCESS_TOKEN),
            access_token_expiration_time=expiration_time,
            id_token=_optional_str(payload, KEY_ID_TOKEN),
            refresh_token=_optional_str(payload, KEY_REFRESH_TOKEN),
            scope=normalize_scope(scope) if scope else None,
            additional_parameters=additional,
        )
