"""
Authorization server configuration: the endpoints a client talks to and,
when known, the OpenID Connect discovery document they came from.
"""
from collections.abc import Mapping
from typing import Any

from pydantic import Field, ValidationError

from .common import BasePydanticModel


class AuthorizationServiceDiscovery(BasePydanticModel):
    """
    An OpenID Connect discovery document (OpenID Connect Discovery 1.0, section 3).

    Only the REQUIRED metadata is mandatory; unknown members are ignored.
    """
    issuer: str
    authorization_endpoint: str
    jwks_uri: str
    response_types_supported: list[str]
    subject_types_supported: list[str]
    id_token_signing_alg_values_supported: list[str]

    token_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    registration_endpoint: str | None = None
    end_session_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    response_modes_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None
    claims_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None
    service_documentation: str | None = None
    ui_locales_supported: list[str] | None = None
    request_uri_parameter_supported: bool | None = None
    require_request_uri_registration: bool | None = None


class AuthorizationServiceConfiguration(BasePydanticModel):
    """Endpoints of an authorization server, hand configured or discovered."""
    authorization_endpoint: str
    token_endpoint: str
    issuer: str | None = None
    end_session_endpoint: str | None = None
    registration_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    discovery: AuthorizationServiceDiscovery | None = Field(
        None, description="Discovery document the endpoints were read from, if any."
    )

    @classmethod
    def from_discovery_document(cls, document: Mapping[str, Any]) -> "AuthorizationServiceConfiguration":
        """
        Builds a configuration from a parsed discovery document.

        The document is embedded when it validates as an OpenID Connect
        discovery document; plain OAuth 2.0 metadata only needs the
        authorization and token endpoints.

        Raises:
            ValueError: If the document lacks the authorization or token endpoint.
        """
        try:
            discovery = AuthorizationServiceDiscovery.model_validate(document)
        except ValidationError:
            discovery = None
        return cls(
            authorization_endpoint=document.get("authorization_endpoint"),
            token_endpoint=document.get("token_endpoint"),
            issuer=document.get("issuer"),
            end_session_endpoint=document.get("end_session_endpoint"),
            registration_endpoint=document.get("registration_endpoint"),
            userinfo_endpoint=document.get("userinfo_endpoint"),
            discovery=discovery,
        )
