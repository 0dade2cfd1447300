"""
Conversation connector interface and its tagged negotiation result.

The connector decides which transport it produced: either a live streaming
connection, or the credentials needed to drive the REST polling API.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional, Union

import httpx

from copilot_session.errors import NegotiationError
from copilot_session.logger import get_logger
from copilot_session.target import AgentTarget

logger = get_logger(__name__)


class Subscription(ABC):
    @abstractmethod
    def unsubscribe(self) -> None:
        pass


class StreamingConnection(ABC):
    """A push-style connection as produced by the Copilot Studio client."""

    @abstractmethod
    def subscribe(self, on_activity: Callable[[dict[str, Any]], None]) -> Subscription:
        """Register a callback invoked for every inbound activity."""
        pass

    @abstractmethod
    def post_activity(self, activity: dict[str, Any]) -> AsyncIterator[str]:
        """
        Post an activity. The returned stream yields acknowledgement ids and
        completes on success or raises on failure.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


@dataclass
class StreamingNegotiation:
    connection: StreamingConnection


@dataclass
class RestNegotiation:
    token: Optional[str] = field(default=None, repr=False)
    domain: Optional[str] = None
    conversation_id: Optional[str] = None


NegotiationResult = Union[StreamingNegotiation, RestNegotiation]


class Connector(ABC):
    """Negotiates a conversation for an agent target."""

    @abstractmethod
    async def negotiate(self, target: AgentTarget, token: str) -> NegotiationResult:
        """
        Negotiate a conversation channel.

        Raises:
            NegotiationError: the service refused or could not be reached.
        """
        pass


async def dispose_negotiation(result: NegotiationResult) -> None:
    """Release whatever a negotiation produced."""
    if isinstance(result, StreamingNegotiation):
        try:
            await result.connection.close()
        except Exception as e:
            logger.debug(f"Streaming connection cleanup failed: {e}")


class TokenEndpointConnector(Connector):
    """
    Connector backed by an agent's Direct Line token endpoint.

    The endpoint is called with the user's bearer token and answers with
    ``{"token": ..., "conversationId"?: ..., "domain"?: ...}``.
    """

    def __init__(self, client: httpx.AsyncClient, endpoint: str, timeout: float = 20.0):
        if not endpoint.startswith("https://"):
            raise ValueError("Token endpoint must use HTTPS.")
        self._client = client
        self.endpoint = endpoint
        self.timeout = timeout

    async def negotiate(self, target: AgentTarget, token: str) -> RestNegotiation:
        try:
            resp = await self._client.get(
                self.endpoint,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise NegotiationError(
                f"Token endpoint refused the request ({e.response.status_code})",
                code="token_endpoint",
                status=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise NegotiationError(
                f"Token endpoint unreachable: {e}", code="token_endpoint"
            ) from e
        if not isinstance(data, dict):
            raise NegotiationError("Token endpoint returned an unexpected body", code="token_endpoint")

        logger.debug(
            f"Token endpoint answered for bot {target.bot_id} "
            f"(conversation={data.get('conversationId')})"
        )
        return RestNegotiation(
            token=data.get("token"),
            domain=data.get("domain"),
            conversation_id=data.get("conversationId"),
        )
