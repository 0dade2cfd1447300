"""Shared pytest fixtures and fakes."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from copilot_session.channels.connector import (
    Connector,
    StreamingConnection,
    StreamingNegotiation,
    Subscription,
)
from copilot_session.config import SessionConfig
from copilot_session.context import SessionContext
from copilot_session.identity.provider import Account, AuthResult, IdentityProvider, Token

AGENT_URL = (
    "https://copilotstudio.microsoft.com/environments/env-1/bots/bot-1/canvas?__version__=2"
)


async def settle(rounds: int = 10):
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_token(value="token-1", seconds=3600, now=None):
    now = now or datetime.now(timezone.utc)
    return Token(value=value, expires_on=now + timedelta(seconds=seconds))


class FakeIdentityProvider(IdentityProvider):
    """Identity provider that hands out tokens from memory."""

    def __init__(self, account=None, lifetime=3600):
        self.account = account
        self.lifetime = lifetime
        self.silent_error = None
        self.interactive_error = None
        self.silent_calls = []
        self.interactive_calls = []
        self.signed_out = []
        self._issued = 0

    def _issue(self, scopes, account):
        self._issued += 1
        expires_on = datetime.now(timezone.utc) + timedelta(seconds=self.lifetime)
        token = Token(value=f"token-{self._issued}", expires_on=expires_on, scopes=tuple(scopes))
        return AuthResult(token=token, account=account)

    def get_active_account(self):
        return self.account

    async def acquire_token_silent(self, scopes, account):
        self.silent_calls.append(list(scopes))
        if self.silent_error:
            raise self.silent_error
        return self._issue(scopes, account)

    async def acquire_token_interactive(self, scopes):
        self.interactive_calls.append(list(scopes))
        if self.interactive_error:
            raise self.interactive_error
        self.account = self.account or Account("home-1", username="ada@contoso.com")
        return self._issue(scopes, self.account)

    async def sign_out(self, account):
        self.signed_out.append(account)
        self.account = None


class FakeSubscription(Subscription):
    def __init__(self, connection):
        self.connection = connection
        self.active = True

    def unsubscribe(self):
        self.active = False
        self.connection.callback = None


class FakeStreamingConnection(StreamingConnection):
    """Push connection: tests call ``emit`` to deliver inbound activities."""

    def __init__(self):
        self.callback = None
        self.subscription = None
        self.posted = []
        self.closed = False
        self.fail_posts = False
        self.post_gate = None

    def subscribe(self, on_activity):
        self.callback = on_activity
        self.subscription = FakeSubscription(self)
        return self.subscription

    def emit(self, activity):
        if self.callback:
            self.callback(activity)

    async def post_activity(self, activity):
        self.posted.append(activity)
        if self.post_gate is not None:
            await self.post_gate.wait()
        if self.fail_posts:
            raise RuntimeError("socket closed")
        yield f"ack-{len(self.posted)}"

    async def close(self):
        self.closed = True


class FakeConnector(Connector):
    """Connector that returns a fresh streaming connection per negotiation."""

    def __init__(self, make_result=None):
        self._make_result = make_result
        self.calls = []
        self.connections = []
        self.gate = None
        self.error = None

    @property
    def connection(self):
        return self.connections[-1] if self.connections else None

    async def negotiate(self, target, token):
        self.calls.append((target, token))
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        if self._make_result:
            return self._make_result()
        connection = FakeStreamingConnection()
        self.connections.append(connection)
        return StreamingNegotiation(connection)


@pytest.fixture
def config():
    return SessionConfig(
        client_id="client-1",
        tenant_id="tenant-1",
        agent_url=AGENT_URL,
        scopes=["https://api.powerplatform.com/CopilotStudio.Copilots.Invoke", "openid"],
    )


@pytest.fixture
def account():
    return Account("home-1", username="ada@contoso.com", name="Ada")


@pytest.fixture
def provider(account):
    return FakeIdentityProvider(account=account)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def errors():
    return []


@pytest_asyncio.fixture
async def context(config, provider, connector, errors):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    ctx = SessionContext.create(
        config, provider, connector=connector, http_client=client, on_error=errors.append
    )
    yield ctx
    await ctx.aclose()
    await client.aclose()
