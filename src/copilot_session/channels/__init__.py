"""
Conversation channels.

- base: the Channel ABC both transports implement
- connector: connector ABC and the tagged negotiation result
- streaming: push-style channel over a live connection
- polling: Direct Line REST long-polling channel
- establisher: negotiation that picks the right channel
"""

from copilot_session.channels.base import Channel
from copilot_session.channels.connector import (
    Connector,
    NegotiationResult,
    RestNegotiation,
    StreamingConnection,
    StreamingNegotiation,
    Subscription,
    TokenEndpointConnector,
)
from copilot_session.channels.polling import PollingChannel, sanitize_transport_domain
from copilot_session.channels.streaming import StreamingChannel

__all__ = [
    "Channel",
    "Connector",
    "NegotiationResult",
    "PollingChannel",
    "RestNegotiation",
    "StreamingChannel",
    "StreamingConnection",
    "StreamingNegotiation",
    "Subscription",
    "TokenEndpointConnector",
    "sanitize_transport_domain",
]
