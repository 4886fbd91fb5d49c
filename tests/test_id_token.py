"""
Unit tests for ID token decoding and claim validation.
"""
import pytest

from appauth.auth.id_token import IdToken, IdTokenParseError, IdTokenValidationError
from appauth.exceptions import AuthorizationException, GeneralErrors
from appauth.models.configuration import AuthorizationServiceConfiguration
from appauth.models.token import TokenRequest
from appauth.utils.clock import fixed_clock
from appauth.utils.codec import urlsafe_b64encode_nopad

from conftest import ISSUER, NOW


@pytest.fixture
def code_request(discovered_config):
    return (
        TokenRequest.builder(discovered_config, "c1")
        .set_authorization_code("abc")
        .set_redirect_uri("https://app/cb")
        .set_nonce("nonce-1")
        .build()
    )


@pytest.fixture
def refresh_request(discovered_config):
    return TokenRequest.builder(discovered_config, "c1").set_refresh_token("rt").build()


def _discovered(issuer, discovery_document):
    discovery_document["issuer"] = issuer
    return AuthorizationServiceConfiguration.from_discovery_document(discovery_document)


def _assert_validation_error(excinfo, fragment):
    assert excinfo.value == GeneralErrors.ID_TOKEN_VALIDATION_ERROR
    assert isinstance(excinfo.value.__cause__, IdTokenValidationError)
    assert fragment in str(excinfo.value.__cause__)


# --- Parsing ---

def test_parse_reads_claims(make_id_token, valid_claims):
    valid_claims["azp"] = "c1"
    valid_claims["email"] = "user@example.com"
    token = IdToken.parse(make_id_token(valid_claims))

    assert token.issuer == ISSUER
    assert token.subject == "user-123"
    assert token.audience == ["c1"]
    assert token.expiration == int(NOW) + 3600
    assert token.issued_at == int(NOW)
    assert token.nonce == "nonce-1"
    assert token.authorized_party == "c1"
    assert token.additional_claims == {"email": "user@example.com"}
    assert token.signature_verified is False


def test_parse_accepts_audience_list(make_id_token, valid_claims):
    valid_claims["aud"] = ["other", "c1"]
    assert IdToken.parse(make_id_token(valid_claims)).audience == ["other", "c1"]


def test_parse_defaults_missing_claims(make_id_token):
    token = IdToken.parse(make_id_token({}))
    assert token.issuer == ""
    assert token.subject == ""
    assert token.audience == []
    assert token.expiration == 0
    assert token.issued_at == 0
    assert token.nonce is None


@pytest.mark.parametrize("claims_json", [
    '{"exp": 1e400, "iat": -1e400}',
    '{"exp": NaN, "iat": Infinity}',
    '{"exp": "inf", "iat": "nan"}',
    '{"exp": "soon", "iat": true}',
])
def test_parse_defaults_unusable_numeric_claims(claims_json):
    token = IdToken.parse(f"header.{urlsafe_b64encode_nopad(claims_json.encode())}.sig")
    assert token.expiration == 0
    assert token.issued_at == 0


def test_parse_accepts_numeric_strings(make_id_token):
    token = IdToken.parse(make_id_token({"exp": "1700003600.5", "iat": 1700000000.9}))
    assert token.expiration == 1700003600
    assert token.issued_at == 1700000000


@pytest.mark.parametrize("raw", ["no-dots-at-all", "", "header.!!!not-base64!!!.sig", "header.bm90LWpzb24.sig"])
def test_parse_rejects_malformed_tokens(raw):
    with pytest.raises(AuthorizationException) as excinfo:
        IdToken.parse(raw)
    assert excinfo.value == GeneralErrors.ID_TOKEN_PARSING_ERROR
    assert isinstance(excinfo.value.__cause__, IdTokenParseError)


def test_parse_rejects_non_object_claims():
    # "WzEsMl0" is base64url for "[1,2]"
    with pytest.raises(AuthorizationException) as excinfo:
        IdToken.parse("header.WzEsMl0.sig")
    assert excinfo.value == GeneralErrors.ID_TOKEN_PARSING_ERROR


def test_parse_accepts_two_segment_token(make_id_token, valid_claims):
    header, claims, _ = make_id_token(valid_claims).split(".")
    assert IdToken.parse(f"{header}.{claims}").subject == "user-123"


# --- Validation ---

def test_valid_token_passes(make_id_token, valid_claims, code_request, clock):
    IdToken.parse(make_id_token(valid_claims)).validate_claims(code_request, clock)


def test_static_configuration_skips_validation(make_id_token, static_config, clock):
    request = TokenRequest.builder(static_config, "c1").set_refresh_token("rt").build()
    IdToken.parse(make_id_token({"iss": "http://anything", "exp": 0})).validate_claims(request, clock)


def test_issuer_mismatch(make_id_token, valid_claims, code_request, clock):
    valid_claims["iss"] = "https://evil.example.com"
    with pytest.raises(AuthorizationException) as excinfo:
        IdToken.parse(make_id_token(valid_claims)).validate_claims(code_request, clock)
    _assert_validation_error(excinfo, "Issuer mismatch")


def test_issuer_must_be_https(make_id_token, valid_claims, discovery_document, clock):
    config = _discovered("http://idp.example.com", discovery_document)
    request = TokenRequest.builder(config, "c1").set_refresh_token("rt").build()
    valid_claims["iss"] = "http://idp.example.com"
    token = IdToken.parse(make_id_token(valid_claims))

    with pytest.raises(AuthorizationException) as excinfo:
        token.validate_claims(request, clock)
    _assert_validation_error(excinfo, "https")

    token.validate_claims(request, clock, skip_issuer_https_check=True)


def test_issuer_must_have_host(make_id_token, valid_claims, discovery_document, clock):
    config = _discovered("https:///path-only", discovery_document)
    request = TokenRequest.builder(config, "c1").set_refresh_token("rt").build()
    valid_claims["iss"] = "https:///path-only"
    with pytest.raises(AuthorizationException) as excinfo:
        IdToken.parse(make_id_token(valid_claims)).validate_claims(request, clock)
    _assert_validation_error(excinfo, "host")


@pytest.mark.parametrize("issuer", [f"{ISSUER}?tenant=1", f"{ISSUER}#frag"])
def test_issuer_must_not_have_query_or_fragment(make_id_token, valid_claims, discovery_document, clock, issuer):
    config = _discovered(issuer, discovery_document)
    request = TokenRequest.builder(config, "c1").set_refresh_token("rt").build()
    valid_claims["iss"] = issuer
    with pytest.raises(AuthorizationException) as excinfo:
        IdToken.parse(make_id_token(valid_claims)).validate_claims(request, clock)
    _assert_validation_error(excinfo, "query parameters or fragment")


def test_audience_mismatch(make_id_token, valid_claims, code_request, clock):
    valid_claims["aud"] = ["someone-else"]
    with pytest.raises(AuthorizationException) as excinfo:
        IdToken.parse(make_id_token(valid_claims)).validate_claims(code_request, clock)
    _assert_validation_error(excinfo, "Audience mismatch")


def test_authorized_party_satisfies_audience_rule(make_id_token, valid_claims, code_request, clock):
    valid_claims["aud"] = ["someone-else"]
    valid_claims["azp"] = "c1"
    IdToken.parse(make_id_token(valid_claims)).validate_claims(code_request, clock)


def test_expiration_relative_to_clock(make_id_token, valid_claims, code_request):
    valid_claims["exp"] = int(NOW)
    token = IdToken.parse(make_id_token(valid_claims))

    token.validate_claims(code_request, fixed_clock(NOW - 10))
    with pytest.raises(AuthorizationException) as excinfo:
        token.validate_claims(code_request, fixed_clock(NOW + 10))
    _assert_validation_error(excinfo, "expired")


@pytest.mark.parametrize("offset", [-601, 601])
def test_issued_at_must_be_within_ten_minutes(make_id_token, valid_claims, code_request, clock, offset):
    valid_claims["iat"] = int(NOW) + offset
    with pytest.raises(AuthorizationException) as excinfo:
        IdToken.parse(make_id_token(valid_claims)).validate_claims(code_request, clock)
    _assert_validation_error(excinfo, "10 minutes")


@pytest.mark.parametrize("offset", [-600, 600])
def test_issued_at_boundary_is_accepted(make_id_token, valid_claims, code_request, clock, offset):
    valid_claims["iat"] = int(NOW) + offset
    IdToken.parse(make_id_token(valid_claims)).validate_claims(code_request, clock)


def test_nonce_mismatch_for_code_exchange(make_id_token, valid_claims, code_request, clock):
    valid_claims["nonce"] = "other"
    with pytest.raises(AuthorizationException) as excinfo:
        IdToken.parse(make_id_token(valid_claims)).validate_claims(code_request, clock)
    _assert_validation_error(excinfo, "Nonce mismatch")


def test_nonce_ignored_for_refresh(make_id_token, valid_claims, refresh_request, clock):
    del valid_claims["nonce"]
    IdToken.parse(make_id_token(valid_claims)).validate_claims(refresh_request, clock)
