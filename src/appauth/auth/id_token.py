"""
OpenID Connect ID token decoding and claim validation.

Only the claims segment of the compact token is decoded. The signature is
NOT verified: the token is received directly from the token endpoint over
a TLS-validated connection, and that transport trust stands in for
signature trust (OpenID Connect Core 3.1.3.7, rule 6). Tokens obtained any
other way must not be trusted on the strength of this validator.
"""
import binascii
import json
import math
from typing import Any, ClassVar
from urllib.parse import urlsplit

import structlog
from pydantic import Field

from ..exceptions import AuthorizationException, GeneralErrors
from ..models.common import BasePydanticModel, GrantType
from ..models.token import TokenRequest
from ..utils.clock import Clock, default_clock
from ..utils.codec import urlsafe_b64decode_nopad

logger = structlog.get_logger(__name__)

KEY_ISSUER = "iss"
KEY_SUBJECT = "sub"
KEY_AUDIENCE = "aud"
KEY_EXPIRATION = "exp"
KEY_ISSUED_AT = "iat"
KEY_NONCE = "nonce"
KEY_AUTHORIZED_PARTY = "azp"

BUILT_IN_CLAIMS = frozenset({
    KEY_ISSUER,
    KEY_SUBJECT,
    KEY_AUDIENCE,
    KEY_EXPIRATION,
    KEY_ISSUED_AT,
    KEY_NONCE,
    KEY_AUTHORIZED_PARTY,
})

# Maximum accepted distance, in seconds, between now and the iat claim.
TEN_MINUTES_IN_SECONDS = 600


class IdTokenParseError(ValueError):
    """The compact token could not be decoded into a claim set."""
    pass


class IdTokenValidationError(ValueError):
    """A claim failed one of the OpenID Connect Core validation rules."""
    pass


def _string_claim(claims: dict[str, Any], key: str) -> str:
    value = claims.get(key)
    return value if isinstance(value, str) else ""


def _optional_string_claim(claims: dict[str, Any], key: str) -> str | None:
    value = claims.get(key)
    return value if isinstance(value, str) else None


def _numeric_claim(claims: dict[str, Any], key: str) -> int:
    value = claims.get(key)
    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return 0


def _audience_claim(claims: dict[str, Any]) -> list[str]:
    value = claims.get(KEY_AUDIENCE)
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    return []


def _validation_failure(message: str) -> AuthorizationException:
    return AuthorizationException.from_template(
        GeneralErrors.ID_TOKEN_VALIDATION_ERROR, IdTokenValidationError(message)
    )


class IdToken(BasePydanticModel):
    """The decoded, signature-unverified claim set of an ID token."""
    # Signatures are never checked; see the module docstring for the trust boundary.
    signature_verified: ClassVar[bool] = False

    issuer: str
    subject: str
    audience: list[str]
    expiration: int
    issued_at: int
    nonce: str | None = None
    authorized_party: str | None = None
    additional_claims: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def parse(cls, token: str) -> "IdToken":
        """
        Decodes the claims segment of a compact (dot separated) token.

        Missing or malformed numeric claims default to 0, missing string claims to "".

        Raises:
            AuthorizationException: ID_TOKEN_PARSING_ERROR if the token has fewer
                                    than two segments or its claims segment is
                                    not base64url encoded JSON object.
        """
        sections = token.split(".")
        if len(sections) <= 1:
            raise AuthorizationException.from_template(
                GeneralErrors.ID_TOKEN_PARSING_ERROR, IdTokenParseError("ID token must have both header and claims section")
            )
        try:
            claims = json.loads(urlsafe_b64decode_nopad(sections[1]).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise AuthorizationException.from_template(
                GeneralErrors.ID_TOKEN_PARSING_ERROR, IdTokenParseError(f"ID token claims could not be decoded: {e}")
            ) from e
        if not isinstance(claims, dict):
            raise AuthorizationException.from_template(
                GeneralErrors.ID_TOKEN_PARSING_ERROR, IdTokenParseError("ID token claims must be a JSON object")
            )

        return cls(
            issuer=_string_claim(claims, KEY_ISSUER),
            subject=_string_claim(claims, KEY_SUBJECT),
            audience=_audience_claim(claims),
            expiration=_numeric_claim(claims, KEY_EXPIRATION),
            issued_at=_numeric_claim(claims, KEY_ISSUED_AT),
            nonce=_optional_string_claim(claims, KEY_NONCE),
            authorized_party=_optional_string_claim(claims, KEY_AUTHORIZED_PARTY),
            additional_claims={key: value for key, value in claims.items() if key not in BUILT_IN_CLAIMS},
        )

    def validate_claims(
        self,
        token_request: TokenRequest,
        clock: Clock = default_clock,
        skip_issuer_https_check: bool = False,
    ) -> None:
        """
        Validates the claims against the request that obtained the token
        (OpenID Connect Core 3.1.3.7). Without a discovery document the
        provider is statically configured and no validation happens.

        Args:
            token_request: The token request the ID token was returned for.
            clock: Source of the current time in seconds.
            skip_issuer_https_check: Accept non-https issuers (development only).

        Raises:
            AuthorizationException: ID_TOKEN_VALIDATION_ERROR, caused by an
                                    IdTokenValidationError naming the failed rule.
        """
        discovery = token_request.configuration.discovery
        if discovery is None:
            return

        if self.issuer != discovery.issuer:
            raise _validation_failure("Issuer mismatch")

        issuer_uri = urlsplit(self.issuer)
        if not skip_issuer_https_check and issuer_uri.scheme != "https":
            raise _validation_failure("Issuer must be an https URL")
        if not issuer_uri.hostname:
            raise _validation_failure("Issuer host can not be empty")
        if issuer_uri.fragment or issuer_uri.query:
            raise _validation_failure("Issuer URL should not contain query parameters or fragment components")

        client_id = token_request.client_id
        if client_id not in self.audience and client_id != self.authorized_party:
            raise _validation_failure("Audience mismatch")

        now = clock()
        if now > self.expiration:
            raise _validation_failure("ID Token expired")
        if abs(now - self.issued_at) > TEN_MINUTES_IN_SECONDS:
            raise _validation_failure("Issued at time is more than 10 minutes before or after the current time")

        if token_request.grant_type == GrantType.AUTHORIZATION_CODE.value and self.nonce != token_request.nonce:
            raise _validation_failure("Nonce mismatch")

        logger.debug("ID token claims validated.", issuer=self.issuer, client_id=client_id)
