"""
Identity layer: scope selection and the token lifecycle.
"""

from copilot_session.identity.manager import IdentityManager
from copilot_session.identity.provider import Account, AuthResult, IdentityProvider, Token
from copilot_session.identity.scopes import ScopeSelector, TokenPurpose

__all__ = [
    "Account",
    "AuthResult",
    "IdentityManager",
    "IdentityProvider",
    "ScopeSelector",
    "Token",
    "TokenPurpose",
]
