"""
Token lifecycle for the signed-in user.

Acquires tokens silently for the active account, escalates to interactive
sign-in only for interaction-required failures, and keeps the conversation
token fresh with a proactive silent refresh.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

from copilot_session.config import SessionConfig
from copilot_session.errors import ErrorKind, ErrorReporter, IdentityError
from copilot_session.identity.provider import Account, AuthResult, IdentityProvider, Token
from copilot_session.identity.scopes import ScopeSelector, TokenPurpose
from copilot_session.logger import get_logger

logger = get_logger(__name__)


class IdentityManager:
    """Owns the conversation token for one embedding."""

    def __init__(
        self,
        provider: IdentityProvider,
        config: SessionConfig,
        reporter: Optional[ErrorReporter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._provider = provider
        self._reporter = reporter or ErrorReporter()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.scopes = ScopeSelector(config.scopes, config.custom_api_resource)
        self.expiry_skew = config.token_expiry_skew
        self.min_refresh_delay = config.min_refresh_delay
        self._token: Optional[Token] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def account(self) -> Optional[Account]:
        return self._provider.get_active_account()

    @property
    def current_token(self) -> Optional[Token]:
        """The last conversation token acquired, even if it is close to expiry."""
        return self._token

    def has_valid_token(self) -> bool:
        return bool(self._token and self._token.is_valid(self._clock(), self.expiry_skew))

    def scopes_for(self, purpose: TokenPurpose) -> list[str]:
        return self.scopes.for_purpose(purpose)

    async def get_token(
        self,
        purpose: TokenPurpose = TokenPurpose.CONVERSATION,
        *,
        interactive: bool = True,
    ) -> Optional[Token]:
        """
        Return a token for ``purpose``.

        Args:
            purpose: Which scope bucket to request.
            interactive: Whether a visible sign-in may be started when the
                silent attempt needs user interaction.

        Returns:
            The token, or None when it could not be acquired or already
            expires within the skew (the failure has been reported).
        """
        purpose = TokenPurpose(purpose)
        conversation = purpose == TokenPurpose.CONVERSATION
        if conversation and self.has_valid_token():
            return self._token

        scopes = self.scopes_for(purpose)
        if not scopes:
            logger.debug(f"No scopes configured for {purpose.value} token")
            return None

        account = self.account
        if account is None:
            if not interactive:
                logger.debug("No active account; skipping silent acquisition")
                return None
            result = await self._acquire_interactive(scopes)
        else:
            try:
                result = await self._provider.acquire_token_silent(scopes, account)
            except IdentityError as e:
                logger.debug(
                    f"Silent acquisition failed (code={e.code}, subcode={e.subcode})"
                )
                if not (e.interaction_required and interactive):
                    self._reporter.report(e, ErrorKind.IDENTITY)
                    return None
                result = await self._acquire_interactive(scopes)

        if result is None:
            return None
        if not result.token.is_valid(self._clock(), self.expiry_skew):
            self._reporter.report(
                IdentityError(
                    f"Acquired {purpose.value} token expires within {self.expiry_skew:.0f}s",
                    code="token_expired",
                ),
                ErrorKind.IDENTITY,
            )
            return None
        if conversation:
            self._adopt(result)
        return result.token

    async def ensure_token(self) -> Optional[Token]:
        """Return a valid conversation token without ever prompting the user."""
        if self.has_valid_token():
            return self._token
        await self.refresh()
        return self._token if self.has_valid_token() else None

    async def refresh(self) -> Optional[Token]:
        """Silently refresh the conversation token. Failures are logged only."""
        account = self.account
        if account is None:
            return None
        scopes = self.scopes_for(TokenPurpose.CONVERSATION)
        try:
            result = await self._provider.acquire_token_silent(scopes, account)
        except IdentityError as e:
            # The current token stays usable until it really expires.
            logger.warning(
                f"Silent token refresh failed (code={e.code}, subcode={e.subcode}): {e.message}"
            )
            return None
        self._adopt(result)
        logger.debug(f"Token silently refreshed, expires {result.token.expires_on.isoformat()}")
        return result.token

    def refresh_delay(self, token: Token) -> Optional[float]:
        """Seconds until the proactive refresh, or None for an expired token."""
        remaining = token.remaining_seconds(self._clock())
        if remaining <= 0:
            return None
        return max(remaining - self.expiry_skew, self.min_refresh_delay)

    def schedule_refresh(self, token: Token) -> None:
        self._cancel_refresh()
        delay = self.refresh_delay(token)
        if delay is None:
            return
        self._refresh_task = asyncio.create_task(self._refresh_after(delay))
        logger.debug(f"Token refresh scheduled in {delay:.0f}s")

    async def sign_out(self) -> None:
        """Drop the held token and sign the active account out."""
        account = self.account
        await self.close()
        self._token = None
        if account is not None:
            try:
                await self._provider.sign_out(account)
            except IdentityError as e:
                self._reporter.report(e, ErrorKind.IDENTITY)

    async def close(self) -> None:
        """Stop the refresh loop."""
        task = self._refresh_task
        self._refresh_task = None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # -- Internal ------------------------------------------------------------

    async def _acquire_interactive(self, scopes: list[str]) -> Optional[AuthResult]:
        try:
            return await self._provider.acquire_token_interactive(scopes)
        except IdentityError as e:
            self._reporter.report(e, ErrorKind.IDENTITY)
            return None

    def _adopt(self, result: AuthResult) -> None:
        self._token = result.token
        logger.info(
            f"Stored token for {result.account.label}, "
            f"expires {result.token.expires_on.isoformat()}"
        )
        self.schedule_refresh(result.token)

    def _cancel_refresh(self) -> None:
        task = self._refresh_task
        self._refresh_task = None
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _refresh_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self.refresh()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Token refresh task error: {e}")
