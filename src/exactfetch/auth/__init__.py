"""
exactfetch authentication and token management.

Provides the OAuth2 authorization-code flow, expiry tracking with silent
refresh, and persistent token storage for the Exact Online API.
"""

from exactfetch.auth.oauth2 import (
    Credential,
    OAuth2TokenManager,
    extract_authorization_code,
)
from exactfetch.auth.store import TokenStore

__all__ = [
    "Credential",
    "OAuth2TokenManager",
    "TokenStore",
    "extract_authorization_code",
]
