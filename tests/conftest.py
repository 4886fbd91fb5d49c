"""
Shared fixtures for the AppAuth test suite.
"""
import base64
import json

import pytest

from appauth.models.configuration import AuthorizationServiceConfiguration
from appauth.utils.clock import fixed_clock

NOW = 1_700_000_000.0
ISSUER = "https://idp.example.com"
CLIENT_ID = "c1"
REDIRECT_URI = "https://app/cb"


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode("utf-8")).decode("ascii").rstrip("=")


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return fixed_clock(NOW)


@pytest.fixture
def discovery_document():
    return {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/authorize",
        "token_endpoint": f"{ISSUER}/token",
        "userinfo_endpoint": f"{ISSUER}/userinfo",
        "registration_endpoint": f"{ISSUER}/register",
        "end_session_endpoint": f"{ISSUER}/logout",
        "jwks_uri": f"{ISSUER}/jwks",
        "response_types_supported": ["code", "id_token"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["RS256"],
        "code_challenge_methods_supported": ["S256"],
        "some_future_metadata": {"nested": True},
    }


@pytest.fixture
def discovered_config(discovery_document):
    return AuthorizationServiceConfiguration.from_discovery_document(discovery_document)


@pytest.fixture
def static_config():
    return AuthorizationServiceConfiguration(
        authorization_endpoint=f"{ISSUER}/authorize",
        token_endpoint=f"{ISSUER}/token",
        registration_endpoint=f"{ISSUER}/register",
        end_session_endpoint=f"{ISSUER}/logout",
    )


@pytest.fixture
def make_id_token():
    """Returns a function encoding a claim set as an unsigned compact token."""
    def _make(claims: dict) -> str:
        return f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(claims)}.signature"
    return _make


@pytest.fixture
def valid_claims():
    return {
        "iss": ISSUER,
        "sub": "user-123",
        "aud": CLIENT_ID,
        "exp": int(NOW) + 3600,
        "iat": int(NOW),
        "nonce": "nonce-1",
    }
