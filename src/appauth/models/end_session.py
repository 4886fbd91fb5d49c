"""
RP-initiated logout messages (OpenID Connect RP-Initiated Logout 1.0), plus
helpers for carrying a pending request across the browser redirect.
"""
import json
from collections.abc import Mapping
from typing import Any

from pydantic import Field, model_validator

from ..exceptions import IllegalStateError
from ..utils.codec import (
    append_query_parameters,
    check_additional_params,
    generate_random_state,
    query_parameters,
    scope_to_set,
)
from .authorization import AuthorizationRequest
from .common import BasePydanticModel
from .configuration import AuthorizationServiceConfiguration

PARAM_ID_TOKEN_HINT = "id_token_hint"
PARAM_POST_LOGOUT_REDIRECT_URI = "post_logout_redirect_uri"
PARAM_STATE = "state"
PARAM_UI_LOCALES = "ui_locales"

END_SESSION_REQUEST_RESERVED_PARAMS = frozenset({
    PARAM_ID_TOKEN_HINT,
    PARAM_POST_LOGOUT_REDIRECT_URI,
    PARAM_STATE,
    PARAM_UI_LOCALES,
})

REQUEST_TYPE_AUTHORIZATION = "authorization"
REQUEST_TYPE_END_SESSION = "end_session"


class EndSessionRequest(BasePydanticModel):
    configuration: AuthorizationServiceConfiguration
    id_token_hint: str | None = None
    post_logout_redirect_uri: str | None = None
    state: str | None = None
    ui_locales: str | None = None
    additional_parameters: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_additional_params(self) -> "EndSessionRequest":
        check_additional_params(self.additional_parameters, END_SESSION_REQUEST_RESERVED_PARAMS)
        return self

    @classmethod
    def builder(cls, configuration: AuthorizationServiceConfiguration) -> "EndSessionRequestBuilder":
        return EndSessionRequestBuilder(configuration)

    @property
    def ui_locales_values(self) -> set[str]:
        return scope_to_set(self.ui_locales)

    def to_uri(self) -> str:
        """
        Raises:
            IllegalStateError: If the configuration has no end session endpoint.
        """
        endpoint = self.configuration.end_session_endpoint
        if not endpoint:
            raise IllegalStateError("The authorization service does not declare an end session endpoint")
        params: list[tuple[str, str | None]] = [
            (PARAM_ID_TOKEN_HINT, self.id_token_hint),
            (PARAM_STATE, self.state),
            (PARAM_UI_LOCALES, self.ui_locales),
            (PARAM_POST_LOGOUT_REDIRECT_URI, self.post_logout_redirect_uri),
        ]
        params.extend(self.additional_parameters.items())
        return append_query_parameters(endpoint, params)


class EndSessionRequestBuilder:
    def __init__(self, configuration: AuthorizationServiceConfiguration):
        if configuration is None:
            raise ValueError("configuration cannot be null")
        self._fields: dict[str, Any] = {
            "configuration": configuration,
            "state": generate_random_state(),
            "additional_parameters": {},
        }

    def set_id_token_hint(self, id_token_hint: str | None) -> "EndSessionRequestBuilder":
        self._fields["id_token_hint"] = id_token_hint or None
        return self

    def set_post_logout_redirect_uri(self, uri: str | None) -> "EndSessionRequestBuilder":
        self._fields["post_logout_redirect_uri"] = uri or None
        return self

    def set_state(self, state: str | None) -> "EndSessionRequestBuilder":
        if state is not None and not state:
            raise ValueError("state must not be empty")
        self._fields["state"] = state
        return self

    def set_ui_locales(self, ui_locales: str | None) -> "EndSessionRequestBuilder":
        self._fields["ui_locales"] = ui_locales or None
        return self

    def set_additional_parameters(self, params: Mapping[str, str] | None) -> "EndSessionRequestBuilder":
        self._fields["additional_parameters"] = check_additional_params(params, END_SESSION_REQUEST_RESERVED_PARAMS)
        return self

    def build(self) -> EndSessionRequest:
        return EndSessionRequest(**self._fields)


class EndSessionResponse(BasePydanticModel):
    request: EndSessionRequest
    state: str | None = None

    @classmethod
    def from_uri(cls, request: EndSessionRequest, uri: str) -> "EndSessionResponse":
        return cls(request=request, state=query_parameters(uri).get(PARAM_STATE) or None)


def request_type_for(request: AuthorizationRequest | EndSessionRequest) -> str:
    if isinstance(request, AuthorizationRequest):
        return REQUEST_TYPE_AUTHORIZATION
    if isinstance(request, EndSessionRequest):
        return REQUEST_TYPE_END_SESSION
    raise ValueError(f"Unsupported request type: {type(request).__name__}")


def request_to_json(request: AuthorizationRequest | EndSessionRequest) -> str:
    """Serializes a pending request together with its kind."""
    return json.dumps({"type": request_type_for(request), "request": json.loads(request.to_json())})


def request_from_json(json_str: str, request_type: str | None = None) -> AuthorizationRequest | EndSessionRequest:
    """
    Reconstructs a pending request.

    Accepts either the output of request_to_json(), or a bare request JSON
    together with its `request_type`.

    Raises:
        ValueError: If the JSON is malformed or the request type is unknown.
    """
    data = json.loads(json_str)
    if not isinstance(data, dict):
        raise ValueError("request JSON must be an object")
    if request_type is None:
        request_type = data.get("type")
        data = data.get("request")
    if request_type == REQUEST_TYPE_AUTHORIZATION:
        return AuthorizationRequest.model_validate(data)
    if request_type == REQUEST_TYPE_END_SESSION:
        return EndSessionRequest.model_validate(data)
    raise ValueError(f"No request type named {request_type}")
