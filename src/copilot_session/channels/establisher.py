"""
Channel negotiation.

Turns a token and an agent target into a ready Channel: a StreamingChannel
when the connector handed back a live connection, otherwise a PollingChannel
on a freshly opened Direct Line conversation.
"""

from typing import TYPE_CHECKING, Callable, Optional

from copilot_session.channels.base import Channel
from copilot_session.channels.connector import (
    RestNegotiation,
    StreamingNegotiation,
    dispose_negotiation,
)
from copilot_session.channels.polling import (
    PollingChannel,
    sanitize_transport_domain,
    start_conversation,
)
from copilot_session.channels.streaming import StreamingChannel
from copilot_session.errors import NegotiationError
from copilot_session.identity.provider import Token
from copilot_session.logger import get_logger
from copilot_session.session.epoch import EpochTicket
from copilot_session.target import AgentTarget

if TYPE_CHECKING:
    from copilot_session.context import SessionContext

logger = get_logger(__name__)


class ConnectionEstablisher:
    """Negotiates one channel per call; never keeps a reference to it."""

    def __init__(self, context: "SessionContext"):
        self._ctx = context

    async def establish(
        self,
        token: Optional[Token],
        target: Optional[AgentTarget],
        ticket: EpochTicket,
        is_active: Callable[[], bool],
    ) -> Optional[Channel]:
        """
        Negotiate a channel for ``target``.

        Returns:
            The channel, or None when prerequisites are missing or the epoch
            moved on while negotiating (anything produced is disposed).

        Raises:
            NegotiationError: the connector or the conversation start failed.
        """
        if not token or not token.value or not target or not target.is_complete:
            logger.debug(
                f"Channel negotiation skipped (prereqs missing): has_token={bool(token)}, "
                f"environment_id={getattr(target, 'environment_id', '')!r}, "
                f"bot_id={getattr(target, 'bot_id', '')!r}"
            )
            return None

        result = await self._ctx.connector.negotiate(target, token.value)
        if not ticket.is_current():
            logger.debug(f"Discarding negotiation from stale epoch {ticket.value}")
            await dispose_negotiation(result)
            return None

        if isinstance(result, StreamingNegotiation):
            logger.info("Direct Line streaming client established")
            return StreamingChannel(result.connection)

        if isinstance(result, RestNegotiation):
            return await self._open_rest_channel(result, ticket, is_active)

        raise NegotiationError(
            f"Connector returned an unsupported result: {type(result).__name__}",
            code="negotiation_result",
        )

    async def _open_rest_channel(
        self,
        result: RestNegotiation,
        ticket: EpochTicket,
        is_active: Callable[[], bool],
    ) -> Optional[PollingChannel]:
        config = self._ctx.config
        domain = config.transport_domain
        sanitized = sanitize_transport_domain(result.domain)
        if sanitized:
            domain = sanitized
        elif result.domain:
            logger.warning(f"Direct Line domain rejected (unsafe): {result.domain}")

        if not result.token:
            raise NegotiationError("Direct Line token not returned", code="missing_token")

        conversation_id = result.conversation_id
        if not conversation_id:
            conversation_id = await start_conversation(
                self._ctx.http_client, domain, result.token, timeout=config.poll_timeout
            )
            if not ticket.is_current():
                logger.debug(f"Dropping conversation from stale epoch {ticket.value}")
                return None

        logger.info(f"Direct Line REST client established (domain={domain})")
        return PollingChannel(
            self._ctx.http_client,
            domain=domain,
            token=result.token,
            conversation_id=conversation_id,
            is_active=is_active,
            poll_interval=config.poll_interval,
            retry_delay=config.poll_retry_delay,
            request_timeout=config.poll_timeout,
            sleep=self._ctx.sleep,
        )
