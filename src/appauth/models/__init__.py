from .authorization import AuthorizationRequest, AuthorizationResponse
from .common import BasePydanticModel, GrantType, ResponseTypeValues
from .configuration import AuthorizationServiceConfiguration, AuthorizationServiceDiscovery
from .end_session import EndSessionRequest, EndSessionResponse, request_from_json, request_to_json, request_type_for
from .registration import RegistrationRequest, RegistrationResponse
from .token import TokenRequest, TokenResponse

__all__ = [
    "AuthorizationRequest",
    "AuthorizationResponse",
    "AuthorizationServiceConfiguration",
    "AuthorizationServiceDiscovery",
    "BasePydanticModel",
    "EndSessionRequest",
    "EndSessionResponse",
    "GrantType",
    "RegistrationRequest",
    "RegistrationResponse",
    "ResponseTypeValues",
    "TokenRequest",
    "TokenResponse",
    "request_from_json",
    "request_to_json",
    "request_type_for",
]
