"""
Explicit context shared by the session components.

One context per embedding: it owns the config, the identity manager, the
connector, the HTTP client and the error reporter, and is handed to every
component constructor instead of living in module globals.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

import httpx

from copilot_session.channels.connector import Connector, TokenEndpointConnector
from copilot_session.channels.polling import Sleep
from copilot_session.config import SessionConfig
from copilot_session.errors import ErrorHook, ErrorReporter
from copilot_session.identity.manager import IdentityManager
from copilot_session.identity.provider import IdentityProvider


@dataclass
class SessionContext:
    config: SessionConfig
    identity: IdentityManager
    connector: Connector
    http_client: httpx.AsyncClient
    reporter: ErrorReporter = field(default_factory=ErrorReporter)
    sleep: Sleep = asyncio.sleep
    owns_http_client: bool = field(default=False, repr=False)

    @classmethod
    def create(
        cls,
        config: SessionConfig,
        provider: IdentityProvider,
        *,
        connector: Optional[Connector] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_error: Optional[ErrorHook] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> "SessionContext":
        """
        Wire up a context from config and an identity provider.

        Without an explicit connector, the agent's token endpoint
        (``config.token_endpoint``) is used.
        """
        owns_client = http_client is None
        client = http_client or httpx.AsyncClient()
        reporter = ErrorReporter(on_error)

        if connector is None:
            if not config.token_endpoint:
                raise ValueError(
                    "A connector or a token endpoint (COPILOT_TOKEN_ENDPOINT) is required."
                )
            connector = TokenEndpointConnector(
                client, config.token_endpoint, timeout=config.poll_timeout
            )

        return cls(
            config=config,
            identity=IdentityManager(provider, config, reporter),
            connector=connector,
            http_client=client,
            reporter=reporter,
            sleep=sleep,
            owns_http_client=owns_client,
        )

    async def aclose(self) -> None:
        await self.identity.close()
        if self.owns_http_client:
            await self.http_client.aclose()
