"""AppAuth - OAuth 2.0 / OpenID Connect relying-party client for native applications.

Builds authorization-code-with-PKCE requests, exchanges codes and refresh
tokens, validates ID tokens and keeps the client's session in an immutable
AuthState.
"""

__version__ = "0.1.0"

from .auth.auth_state import AuthState
from .auth.oauth_client import AuthorizationService
from .config import Config
from .exceptions import AuthorizationException

__all__ = ["AuthState", "AuthorizationException", "AuthorizationService", "Config"]
