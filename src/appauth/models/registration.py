"""
Dynamic client registration messages (RFC 7591, OpenID Connect Dynamic Client Registration 1.0).
"""
from collections.abc import Mapping
from typing import Any

from pydantic import Field, model_validator

from ..utils.clock import Clock, default_clock
from ..utils.codec import check_additional_params
from .common import BasePydanticModel
from .configuration import AuthorizationServiceConfiguration

APPLICATION_TYPE_NATIVE = "native"

PARAM_REDIRECT_URIS = "redirect_uris"
PARAM_RESPONSE_TYPES = "response_types"
PARAM_GRANT_TYPES = "grant_types"
PARAM_APPLICATION_TYPE = "application_type"
PARAM_SUBJECT_TYPE = "subject_type"
PARAM_JWKS_URI = "jwks_uri"
PARAM_TOKEN_ENDPOINT_AUTHENTICATION_METHOD = "token_endpoint_auth_method"

REGISTRATION_REQUEST_RESERVED_PARAMS = frozenset({
    PARAM_REDIRECT_URIS,
    PARAM_RESPONSE_TYPES,
    PARAM_GRANT_TYPES,
    PARAM_APPLICATION_TYPE,
    PARAM_SUBJECT_TYPE,
    PARAM_JWKS_URI,
    PARAM_TOKEN_ENDPOINT_AUTHENTICATION_METHOD,
})

KEY_CLIENT_ID = "client_id"
KEY_CLIENT_SECRET = "client_secret"
KEY_CLIENT_SECRET_EXPIRES_AT = "client_secret_expires_at"
KEY_REGISTRATION_ACCESS_TOKEN = "registration_access_token"
KEY_REGISTRATION_CLIENT_URI = "registration_client_uri"
KEY_CLIENT_ID_ISSUED_AT = "client_id_issued_at"
KEY_TOKEN_ENDPOINT_AUTH_METHOD = "token_endpoint_auth_method"

REGISTRATION_RESPONSE_RESERVED_PARAMS = frozenset({
    KEY_CLIENT_ID,
    KEY_CLIENT_SECRET,
    KEY_CLIENT_SECRET_EXPIRES_AT,
    KEY_REGISTRATION_ACCESS_TOKEN,
    KEY_REGISTRATION_CLIENT_URI,
    KEY_CLIENT_ID_ISSUED_AT,
    KEY_TOKEN_ENDPOINT_AUTH_METHOD,
})


class RegistrationRequest(BasePydanticModel):
    configuration: AuthorizationServiceConfiguration
    redirect_uris: list[str]
    application_type: str = APPLICATION_TYPE_NATIVE
    response_types: list[str] | None = None
    grant_types: list[str] | None = None
    subject_type: str | None = None
    jwks_uri: str | None = None
    token_endpoint_auth_method: str | None = None
    additional_parameters: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_invariants(self) -> "RegistrationRequest":
        if not self.redirect_uris:
            raise ValueError("redirect URI values must be non-empty")
        check_additional_params(self.additional_parameters, REGISTRATION_REQUEST_RESERVED_PARAMS)
        return self

    @classmethod
    def builder(
        cls, configuration: AuthorizationServiceConfiguration, redirect_uris: list[str]
    ) -> "RegistrationRequestBuilder":
        return RegistrationRequestBuilder(configuration, redirect_uris)

    def to_wire(self) -> dict[str, Any]:
        """The JSON object POSTed to the registration endpoint."""
        body: dict[str, Any] = {
            PARAM_REDIRECT_URIS: list(self.redirect_uris),
            PARAM_APPLICATION_TYPE: self.application_type,
        }
        optional = {
            PARAM_RESPONSE_TYPES: self.response_types,
            PARAM_GRANT_TYPES: self.grant_types,
            PARAM_SUBJECT_TYPE: self.subject_type,
            PARAM_JWKS_URI: self.jwks_uri,
            PARAM_TOKEN_ENDPOINT_AUTHENTICATION_METHOD: self.token_endpoint_auth_method,
        }
        body.update({key: value for key, value in optional.items() if value is not None})
        body.update(self.additional_parameters)
        return body


class RegistrationRequestBuilder:
    def __init__(self, configuration: AuthorizationServiceConfiguration, redirect_uris: list[str]):
        if configuration is None:
            raise ValueError("configuration cannot be null")
        self._fields: dict[str, Any] = {"configuration": configuration, "additional_parameters": {}}
        self.set_redirect_uri_values(redirect_uris)

    def set_redirect_uri_values(self, redirect_uris: list[str]) -> "RegistrationRequestBuilder":
        if not redirect_uris:
            raise ValueError("redirect URI values must be non-empty")
        self._fields["redirect_uris"] = list(redirect_uris)
        return self

    def set_response_type_values(self, response_types: list[str] | None) -> "RegistrationRequestBuilder":
        self._fields["response_types"] = list(response_types) if response_types is not None else None
        return self

    def set_grant_type_values(self, grant_types: list[str] | None) -> "RegistrationRequestBuilder":
        self._fields["grant_types"] = list(grant_types) if grant_types is not None else None
        return self

    def set_subject_type(self, subject_type: str | None) -> "RegistrationRequestBuilder":
        self._fields["subject_type"] = subject_type
        return self

    def set_jwks_uri(self, jwks_uri: str | None) -> "RegistrationRequestBuilder":
        self._fields["jwks_uri"] = jwks_uri
        return self

    def set_token_endpoint_authentication_method(self, method: str | None) -> "RegistrationRequestBuilder":
        self._fields["token_endpoint_auth_method"] = method
        return self

    def set_additional_parameters(self, params: Mapping[str, str] | None) -> "RegistrationRequestBuilder":
        self._fields["additional_parameters"] = check_additional_params(params, REGISTRATION_REQUEST_RESERVED_PARAMS)
        return self

    def build(self) -> RegistrationRequest:
        return RegistrationRequest(**self._fields)


class RegistrationResponse(BasePydanticModel):
    """
    The client information returned by a successful registration.
    Timestamps are seconds since the epoch; a secret expiry of 0 means it never expires.
    """
    request: RegistrationRequest
    client_id: str
    client_id_issued_at: int | None = None
    client_secret: str | None = None
    client_secret_expires_at: int | None = None
    registration_access_token: str | None = None
    registration_client_uri: str | None = None
    token_endpoint_auth_method: str | None = None
    additional_parameters: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_invariants(self) -> "RegistrationResponse":
        if not self.client_id:
            raise ValueError("client ID cannot be null or empty")
        # RFC 7591 section 3.2.1: client_secret_expires_at is REQUIRED if client_secret is issued.
        if self.client_secret is not None and self.client_secret_expires_at is None:
            raise ValueError("client_secret_expires_at is required when client_secret is issued")
        # registration_access_token and registration_client_uri come as a pair.
        if (self.registration_access_token is None) != (self.registration_client_uri is None):
            raise ValueError("registration_access_token and registration_client_uri must be provided together")
        check_additional_params(self.additional_parameters, REGISTRATION_RESPONSE_RESERVED_PARAMS)
        return self

    @classmethod
    def from_wire(cls, request: RegistrationRequest, payload: Mapping[str, Any]) -> "RegistrationResponse":
        """
        Raises:
            ValueError: If required members are missing or the payload is inconsistent.
        """
        additional = {
            key: value if isinstance(value, str) else str(value)
            for key, value in payload.items()
            if key not in REGISTRATION_RESPONSE_RESERVED_PARAMS
            and value is not None
            and not isinstance(value, (dict, list))
        }
        known = {key: payload[key] for key in REGISTRATION_RESPONSE_RESERVED_PARAMS if key in payload}
        return cls.model_validate({"request": request, **known, "additional_parameters": additional})

    def has_client_secret_expired(self, clock: Clock = default_clock) -> bool:
        if self.client_secret_expires_at is None or self.client_secret_expires_at == 0:
            return False
        return clock() > self.client_secret_expires_at
