"""Authentication module.

Provides:
- TokenVerifier: bearer token -> AuthUser via the Supabase auth server
"""

from .verifier import AuthUser, TokenVerifier

__all__ = [
    "AuthUser",
    "TokenVerifier",
]
