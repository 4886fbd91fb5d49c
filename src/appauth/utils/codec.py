"""
Form-url encoding, scope strings, opaque state values and the
additional-parameter checks shared by every protocol message.
"""
import base64
import secrets
from collections.abc import Iterable, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

STATE_LENGTH_BYTES = 16


def urlsafe_b64encode_nopad(data: bytes) -> str:
    """URL-safe base64 without padding or line wraps."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def urlsafe_b64decode_nopad(data: str) -> bytes:
    """Decodes URL-safe base64 that may lack its padding."""
    padding = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * padding)


def generate_random_state() -> str:
    """
    Generates an opaque value for the `state` (and `nonce`) parameter.

    Returns:
        16 bytes of cryptographically secure randomness, URL-safe base64
        encoded without padding.
    """
    return urlsafe_b64encode_nopad(secrets.token_bytes(STATE_LENGTH_BYTES))


def form_url_encode(params: Mapping[str, str | None] | Iterable[tuple[str, str | None]]) -> str:
    """Encodes parameters as `application/x-www-form-urlencoded`, skipping None values."""
    items = params.items() if isinstance(params, Mapping) else params
    return urlencode([(key, value) for key, value in items if value is not None])


def form_url_decode(encoded: str) -> list[tuple[str, str]]:
    """Decodes a form-url encoded string into ordered (key, value) pairs."""
    if not encoded:
        return []
    return parse_qsl(encoded, keep_blank_values=True)


def form_url_decode_unique(encoded: str) -> dict[str, str]:
    """Like form_url_decode, but keyed by name. The first occurrence of a name wins."""
    result: dict[str, str] = {}
    for key, value in form_url_decode(encoded):
        result.setdefault(key, value)
    return result


def query_parameters(uri: str) -> dict[str, str]:
    """Returns the query parameters of ``uri`` (first value per name)."""
    return form_url_decode_unique(urlsplit(uri).query)


def append_query_parameters(uri: str, params: Iterable[tuple[str, str | None]]) -> str:
    """
    Appends the non-None ``params`` to ``uri`` in the given order, keeping
    any query string the URI already carries.
    """
    parts = urlsplit(uri)
    extra = form_url_encode(params)
    if not extra:
        return uri
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def normalize_scope(scope: str | None) -> str | None:
    """
    Collapses a scope string into single-space separated scope values.

    Raises:
        ValueError: If the scope is present but holds no scope values.
    """
    if scope is None:
        return None
    values = scope.split()
    if not values:
        raise ValueError("individual scopes cannot be null or empty")
    return " ".join(values)


def scope_to_set(scope: str | None) -> set[str]:
    if scope is None:
        return set()
    return set(scope.split())


def set_to_scope(scopes: Iterable[str] | None) -> str | None:
    """Joins scope values into a scope string, None for an empty iterable."""
    if scopes is None:
        return None
    values = []
    for value in scopes:
        if not value or not value.strip():
            raise ValueError("individual scopes cannot be null or empty")
        values.append(value.strip())
    return " ".join(values) if values else None


def check_additional_params(params: Mapping[str, str] | None, reserved: Iterable[str]) -> dict[str, str]:
    """
    Copies caller supplied additional parameters after checking that none of
    them collides with a parameter the message type supports directly.

    Raises:
        ValueError: If a key is one of the reserved parameter names.
    """
    if not params:
        return {}
    reserved_names = frozenset(reserved)
    checked: dict[str, str] = {}
    for key, value in params.items():
        if key in reserved_names:
            raise ValueError(
                f"Parameter {key} is directly supported via the builder, use the builder method instead"
            )
        checked[key] = value
    return checked
