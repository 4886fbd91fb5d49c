"""
Error catalogue for the OAuth 2.0 / OpenID Connect client.

Every recoverable failure surfaced to a caller is an `AuthorizationException`
derived from one of the catalogued values below. Values are grouped by
protocol phase, each phase owning a numeric range:

- general errors: 0-999
- authorization endpoint errors: 1000-1999
- token endpoint errors: 2000-2999
- registration endpoint errors: 4000-4999

Two exceptions are equal when their type and code are equal; descriptions
and URIs are informational only.
"""
import json
from enum import IntEnum
from typing import Any

from pydantic_core import core_schema

from .utils.codec import query_parameters

PARAM_ERROR = "error"
PARAM_ERROR_DESCRIPTION = "error_description"
PARAM_ERROR_URI = "error_uri"


class IllegalStateError(RuntimeError):
    """Raised when an operation is invoked on an object that cannot support it (a programming error)."""
    pass


class ErrorType(IntEnum):
    GENERAL = 0
    OAUTH_AUTHORIZATION = 1
    OAUTH_TOKEN = 2
    RESOURCE_SERVER_AUTHORIZATION = 3
    OAUTH_REGISTRATION = 4


class AuthorizationException(Exception):
    """
    A catalogued OAuth failure.

    Attributes:
        type: The ErrorType (protocol phase) of the error.
        code: The catalogue code, unique within a type.
        error: The OAuth2 `error` string as received on the wire, if any.
        error_description: Human readable description, if available.
        error_uri: URI of a human readable page describing the error, if available.
    """

    def __init__(
        self,
        type: int,
        code: int,
        error: str | None = None,
        error_description: str | None = None,
        error_uri: str | None = None,
    ):
        super().__init__(error_description or error or f"Authorization error {type}/{code}")
        self.type = ErrorType(type)
        self.code = code
        self.error = error
        self.error_description = error_description
        self.error_uri = error_uri

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True
        if not isinstance(other, AuthorizationException):
            return NotImplemented
        return self.type == other.type and self.code == other.code

    def __hash__(self) -> int:
        return hash((int(self.type), self.code))

    def __repr__(self) -> str:
        return f"AuthorizationException({self.to_json()})"

    def __str__(self) -> str:
        return f"AuthorizationException: {self.to_json()}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": int(self.type),
            "code": self.code,
            "error": self.error,
            "error_description": self.error_description,
            "error_uri": self.error_uri,
        }

    def to_json(self) -> str:
        """JSON form for transport across a redirect or storage boundary. The root cause is not included."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthorizationException":
        try:
            return cls(
                type=int(data["type"]),
                code=int(data["code"]),
                error=data.get("error"),
                error_description=data.get("error_description"),
                error_uri=data.get("error_uri"),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed authorization exception data: {e}") from e

    @classmethod
    def from_json(cls, json_str: str) -> "AuthorizationException":
        """
        Reconstructs an exception from the output of `to_json`.

        Raises:
            ValueError: If the JSON is empty, malformed or misses required properties.
        """
        if not json_str:
            raise ValueError("json_str cannot be null or empty")
        data = json.loads(json_str)
        if not isinstance(data, dict):
            raise ValueError("Authorization exception JSON must be an object")
        return cls.from_dict(data)

    @classmethod
    def from_template(
        cls, template: "AuthorizationException", root_cause: BaseException | None = None
    ) -> "AuthorizationException":
        """Creates a fresh exception from a catalogued value, chaining `root_cause` as its cause."""
        ex = cls(template.type, template.code, template.error, template.error_description, template.error_uri)
        ex.__cause__ = root_cause
        return ex

    @classmethod
    def from_oauth_template(
        cls,
        template: "AuthorizationException",
        error: str | None,
        error_description: str | None,
        error_uri: str | None,
    ) -> "AuthorizationException":
        """Creates an exception from a catalogued value, overlaying details from an OAuth error response."""
        return cls(
            template.type,
            template.code,
            error if error is not None else template.error,
            error_description if error_description is not None else template.error_description,
            error_uri if error_uri is not None else template.error_uri,
        )

    @classmethod
    def from_oauth_redirect(cls, redirect_uri: str) -> "AuthorizationException":
        """Creates an exception from a redirect URI describing an authorization failure."""
        params = query_parameters(redirect_uri)
        error = params.get(PARAM_ERROR)
        base = AuthorizationRequestErrors.by_string(error)
        return cls(
            base.type,
            base.code,
            error,
            params.get(PARAM_ERROR_DESCRIPTION) or base.error_description,
            params.get(PARAM_ERROR_URI) or base.error_uri,
        )

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type: Any, handler: Any) -> core_schema.CoreSchema:
        # Lets models embed exceptions and serialize them with to_dict().
        return core_schema.no_info_plain_validator_function(
            cls._coerce,
            serialization=core_schema.plain_serializer_function_ser_schema(lambda ex: ex.to_dict()),
        )

    @classmethod
    def _coerce(cls, value: Any) -> "AuthorizationException":
        if isinstance(value, AuthorizationException):
            return value
        if isinstance(value, dict):
            return cls.from_dict(value)
        if isinstance(value, str):
            return cls.from_json(value)
        raise ValueError(f"Cannot build an AuthorizationException from {type(value).__name__}")


def _general(code: int, description: str) -> AuthorizationException:
    return AuthorizationException(ErrorType.GENERAL, code, None, description, None)


def _authorization(code: int, error: str | None) -> AuthorizationException:
    return AuthorizationException(ErrorType.OAUTH_AUTHORIZATION, code, error, None, None)


def _token(code: int, error: str | None) -> AuthorizationException:
    return AuthorizationException(ErrorType.OAUTH_TOKEN, code, error, None, None)


def _registration(code: int, error: str | None) -> AuthorizationException:
    return AuthorizationException(ErrorType.OAUTH_REGISTRATION, code, error, None, None)


def _by_error_string(*exceptions: AuthorizationException) -> dict[str, AuthorizationException]:
    return {ex.error: ex for ex in exceptions if ex.error is not None}


class GeneralErrors:
    """Errors raised by the client itself rather than reported by a server (0-999)."""
    INVALID_DISCOVERY_DOCUMENT = _general(0, "Invalid discovery document")
    USER_CANCELED_AUTH_FLOW = _general(1, "User cancelled flow")
    PROGRAM_CANCELED_AUTH_FLOW = _general(2, "Flow cancelled programmatically")
    NETWORK_ERROR = _general(3, "Network error")
    SERVER_ERROR = _general(4, "Server error")
    JSON_DESERIALIZATION_ERROR = _general(5, "JSON deserialization error")
    TOKEN_RESPONSE_CONSTRUCTION_ERROR = _general(6, "Token response construction error")
    INVALID_REGISTRATION_RESPONSE = _general(7, "Invalid registration response")
    ID_TOKEN_PARSING_ERROR = _general(8, "Unable to parse ID Token")
    ID_TOKEN_VALIDATION_ERROR = _general(9, "Invalid ID Token")


class AuthorizationRequestErrors:
    """OAuth2 error responses from the authorization endpoint (1000-1999)."""
    INVALID_REQUEST = _authorization(1000, "invalid_request")
    UNAUTHORIZED_CLIENT = _authorization(1001, "unauthorized_client")
    ACCESS_DENIED = _authorization(1002, "access_denied")
    UNSUPPORTED_RESPONSE_TYPE = _authorization(1003, "unsupported_response_type")
    INVALID_SCOPE = _authorization(1004, "invalid_scope")
    SERVER_ERROR = _authorization(1005, "server_error")
    TEMPORARILY_UNAVAILABLE = _authorization(1006, "temporarily_unavailable")
    CLIENT_ERROR = _authorization(1007, None)
    OTHER = _authorization(1008, None)
    # Raised by the client when the response state does not echo the request state.
    # General code 10, since general code 9 is ID_TOKEN_VALIDATION_ERROR.
    STATE_MISMATCH = _general(10, "Response state param did not match request state")

    _BY_STRING = _by_error_string(
        INVALID_REQUEST,
        UNAUTHORIZED_CLIENT,
        ACCESS_DENIED,
        UNSUPPORTED_RESPONSE_TYPE,
        INVALID_SCOPE,
        SERVER_ERROR,
        TEMPORARILY_UNAVAILABLE,
        CLIENT_ERROR,
        OTHER,
    )

    @classmethod
    def by_string(cls, error: str | None) -> AuthorizationException:
        """Returns the catalogued value for an OAuth2 error string, or OTHER if unknown."""
        return cls._BY_STRING.get(error, cls.OTHER) if error is not None else cls.OTHER


class TokenRequestErrors:
    """OAuth2 error responses from the token endpoint (2000-2999)."""
    INVALID_REQUEST = _token(2000, "invalid_request")
    INVALID_CLIENT = _token(2001, "invalid_client")
    INVALID_GRANT = _token(2002, "invalid_grant")
    UNAUTHORIZED_CLIENT = _token(2003, "unauthorized_client")
    UNSUPPORTED_GRANT_TYPE = _token(2004, "unsupported_grant_type")
    INVALID_SCOPE = _token(2005, "invalid_scope")
    CLIENT_ERROR = _token(2006, None)
    OTHER = _token(2007, None)

    _BY_STRING = _by_error_string(
        INVALID_REQUEST,
        INVALID_CLIENT,
        INVALID_GRANT,
        UNAUTHORIZED_CLIENT,
        UNSUPPORTED_GRANT_TYPE,
        INVALID_SCOPE,
        CLIENT_ERROR,
        OTHER,
    )

    @classmethod
    def by_string(cls, error: str | None) -> AuthorizationException:
        """Returns the catalogued value for an OAuth2 error string, or OTHER if unknown."""
        return cls._BY_STRING.get(error, cls.OTHER) if error is not None else cls.OTHER


class RegistrationRequestErrors:
    """Error responses from the dynamic client registration endpoint (4000-4999)."""
    INVALID_REQUEST = _registration(4000, "invalid_request")
    INVALID_REDIRECT_URI = _registration(4001, "invalid_redirect_uri")
    INVALID_CLIENT_METADATA = _registration(4002, "invalid_client_metadata")
    CLIENT_ERROR = _registration(4003, None)
    OTHER = _registration(4004, None)

    _BY_STRING = _by_error_string(
        INVALID_REQUEST,
        INVALID_REDIRECT_URI,
        INVALID_CLIENT_METADATA,
        CLIENT_ERROR,
        OTHER,
    )

    @classmethod
    def by_string(cls, error: str | None) -> AuthorizationException:
        """Returns the catalogued value for a registration error string, or OTHER if unknown."""
        return cls._BY_STRING.get(error, cls.OTHER) if error is not None else cls.OTHER
