"""
Authorization module for the AppAuth client.

This module handles PKCE, ID token validation, the AuthState session
object, redirect handling, persistence of state and the HTTP exchanges
with the authorization server.
"""

# Submodules are imported directly (e.g. `from appauth.auth.auth_state import AuthState`);
# the message models depend on `auth.pkce`, so nothing is re-exported here.
__all__: list[str] = []
