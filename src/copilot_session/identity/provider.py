"""
Identity provider interface.

The interactive sign-in flows and the token cache belong to an external
identity library (MSAL in the browser embedding). The session core only needs
the operations below.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence


@dataclass(frozen=True)
class Account:
    """Identity reference returned by the provider."""

    home_account_id: str
    username: str = ""
    name: str = ""

    @property
    def label(self) -> str:
        return self.username or self.name or "Signed in"


@dataclass(frozen=True)
class Token:
    """An access token and its expiry. The value never appears in reprs."""

    value: str = field(repr=False)
    expires_on: datetime
    scopes: tuple[str, ...] = ()

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (self.expires_on - now).total_seconds()

    def is_valid(self, now: Optional[datetime] = None, skew: float = 60.0) -> bool:
        """A token within ``skew`` seconds of expiry is treated as expired."""
        return bool(self.value) and self.remaining_seconds(now) > skew


@dataclass(frozen=True)
class AuthResult:
    token: Token
    account: Account


class IdentityProvider(ABC):
    """
    Abstract identity provider.

    Implementations raise ``IdentityError`` with the provider's error code and
    sub-error so the manager can tell interaction-required failures apart.
    """

    @abstractmethod
    def get_active_account(self) -> Optional[Account]:
        """Return the active account, or None when nobody is signed in."""
        pass

    @abstractmethod
    async def acquire_token_silent(
        self, scopes: Sequence[str], account: Account
    ) -> AuthResult:
        """Acquire a token from cache/refresh token without user interaction."""
        pass

    @abstractmethod
    async def acquire_token_interactive(self, scopes: Sequence[str]) -> AuthResult:
        """Acquire a token with a visible sign-in (popup or redirect)."""
        pass

    async def sign_out(self, account: Account) -> None:
        """Forget the account. Providers without a sign-out flow do nothing."""
        return None
