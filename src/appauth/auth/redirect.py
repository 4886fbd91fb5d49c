"""
Turns the redirect URI handed back by the browser into a response, an
OAuth error, or a cancellation.
"""
import structlog

from ..exceptions import AuthorizationException, AuthorizationRequestErrors, GeneralErrors
from ..models.authorization import AuthorizationRequest, AuthorizationResponse
from ..models.end_session import EndSessionRequest, EndSessionResponse
from ..utils.clock import Clock, default_clock
from ..utils.codec import query_parameters

logger = structlog.get_logger(__name__)


def response_from_redirect(
    request: AuthorizationRequest | EndSessionRequest,
    redirect_uri: str,
    clock: Clock = default_clock,
) -> AuthorizationResponse | EndSessionResponse:
    """
    Parses the redirect that completed `request`.

    Args:
        request: The pending request the browser was sent with.
        redirect_uri: The full URI the browser was redirected to.
        clock: Used to turn `expires_in` into an absolute expiry.

    Returns:
        The AuthorizationResponse or EndSessionResponse matching the request kind.

    Raises:
        AuthorizationException: The authorization-phase error named by the
                                `error` parameter, STATE_MISMATCH when the
                                returned state differs from the request state,
                                or INVALID_REQUEST for a malformed redirect.
    """
    params = query_parameters(redirect_uri)
    if "error" in params:
        ex = AuthorizationException.from_oauth_redirect(redirect_uri)
        logger.info("Authorization server returned an error.", error=ex.error, code=ex.code)
        raise ex

    if not isinstance(request, (AuthorizationRequest, EndSessionRequest)):
        raise ValueError(f"Unsupported request type: {type(request).__name__}")

    # None on one side only is a mismatch too.
    if request.state != params.get("state"):
        logger.warning("State returned in authorization response does not match the request.")
        raise AuthorizationException.from_template(AuthorizationRequestErrors.STATE_MISMATCH)

    try:
        if isinstance(request, AuthorizationRequest):
            return AuthorizationResponse.from_uri(request, redirect_uri, clock)
        return EndSessionResponse.from_uri(request, redirect_uri)
    except ValueError as e:
        logger.warning("Malformed authorization redirect.", error=str(e))
        raise AuthorizationException.from_template(AuthorizationRequestErrors.INVALID_REQUEST, e) from e


def cancellation_exception(user_initiated: bool = True) -> AuthorizationException:
    """The exception reported when the browser flow ends without a redirect."""
    template = GeneralErrors.USER_CANCELED_AUTH_FLOW if user_initiated else GeneralErrors.PROGRAM_CANCELED_AUTH_FLOW
    return AuthorizationException.from_template(template)
