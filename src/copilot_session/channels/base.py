"""
Base class for conversation channels.

A channel is the transport an established session exchanges activities over.
Both variants expose the same two operations, so the router and the
controller never need to know which transport was negotiated.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator


class Channel(ABC):
    """
    Abstract conversation channel.

    The SessionController owns exactly one instance at a time.
    """

    kind: str = "channel"

    @abstractmethod
    async def post_activity(self, activity: dict[str, Any]) -> None:
        """
        Send one outbound activity.

        Raises:
            TransportError: if the activity was not accepted.
        """
        pass

    @abstractmethod
    def activities(self) -> AsyncIterator[dict[str, Any]]:
        """Yield inbound activities in arrival order until the channel stops."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the transport. Safe to call more than once."""
        pass
