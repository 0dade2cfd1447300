"""
Tests for IdentityManager token acquisition and refresh.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeIdentityProvider, make_token
from copilot_session.config import SessionConfig
from copilot_session.errors import ErrorReporter, IdentityError
from copilot_session.identity.manager import IdentityManager
from copilot_session.identity.provider import Account, AuthResult
from copilot_session.identity.scopes import TokenPurpose

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def identity_config():
    return SessionConfig(
        scopes=[
            "https://api.powerplatform.com/CopilotStudio.Copilots.Invoke",
            "api://custom/Read",
            "openid",
        ],
        custom_api_resource="api://custom",
    )


@pytest.fixture
def reporter():
    return ErrorReporter()


@pytest.fixture
def manager_factory(identity_config, reporter):
    def build(provider, clock=None):
        return IdentityManager(provider, identity_config, reporter, clock=clock)

    return build


class TestGetToken:
    @pytest.mark.asyncio
    async def test_silent_success_is_cached(self, manager_factory, account):
        provider = FakeIdentityProvider(account=account)
        manager = manager_factory(provider)

        first = await manager.get_token()
        second = await manager.get_token()

        assert first is second
        assert len(provider.silent_calls) == 1
        assert provider.silent_calls[0] == [
            "https://api.powerplatform.com/CopilotStudio.Copilots.Invoke",
            "openid",
        ]
        assert provider.interactive_calls == []
        await manager.close()

    @pytest.mark.asyncio
    async def test_no_account_goes_interactive(self, manager_factory):
        provider = FakeIdentityProvider(account=None)
        manager = manager_factory(provider)

        token = await manager.get_token()

        assert token is not None
        assert len(provider.interactive_calls) == 1
        assert manager.account.username == "ada@contoso.com"
        await manager.close()

    @pytest.mark.asyncio
    async def test_no_account_without_interaction(self, manager_factory):
        provider = FakeIdentityProvider(account=None)
        manager = manager_factory(provider)

        assert await manager.get_token(interactive=False) is None
        assert provider.interactive_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,subcode",
        [
            ("interaction_required", None),
            ("LOGIN_REQUIRED", None),
            ("consent_required", None),
            ("no_tokens_found", None),
            ("invalid_grant", "basic_action"),
        ],
    )
    async def test_interaction_required_escalates(
        self, manager_factory, reporter, account, code, subcode
    ):
        provider = FakeIdentityProvider(account=account)
        provider.silent_error = IdentityError("need user", code=code, subcode=subcode)
        manager = manager_factory(provider)

        token = await manager.get_token()

        assert token is not None
        assert len(provider.interactive_calls) == 1
        assert reporter.last is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_other_failures_do_not_prompt(self, manager_factory, reporter, account):
        provider = FakeIdentityProvider(account=account)
        provider.silent_error = IdentityError("server busy", code="temporarily_unavailable")
        manager = manager_factory(provider)

        assert await manager.get_token() is None
        assert provider.interactive_calls == []
        assert reporter.last.code == "temporarily_unavailable"

    @pytest.mark.asyncio
    async def test_interaction_required_but_not_allowed(self, manager_factory, reporter, account):
        provider = FakeIdentityProvider(account=account)
        provider.silent_error = IdentityError("need user", code="interaction_required")
        manager = manager_factory(provider)

        assert await manager.get_token(interactive=False) is None
        assert provider.interactive_calls == []
        assert reporter.last.code == "interaction_required"

    @pytest.mark.asyncio
    async def test_interactive_failure_reported(self, manager_factory, reporter):
        provider = FakeIdentityProvider(account=None)
        provider.interactive_error = IdentityError("popup blocked", code="popup_window_error")
        manager = manager_factory(provider)

        assert await manager.get_token() is None
        assert reporter.last.format() == "popup_window_error | popup blocked"

    @pytest.mark.asyncio
    async def test_held_token_inside_skew_is_reacquired(self, manager_factory, account):
        provider = FakeIdentityProvider(account=account)
        manager = manager_factory(provider)
        manager._token = make_token("stale", seconds=45)

        token = await manager.get_token()

        assert token.value == "token-1"
        assert len(provider.silent_calls) == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_acquired_token_inside_skew_is_rejected(self, manager_factory, reporter, account):
        provider = FakeIdentityProvider(account=account, lifetime=45)
        manager = manager_factory(provider)

        assert await manager.get_token() is None
        assert manager.current_token is None
        assert reporter.last.code == "token_expired"

    @pytest.mark.asyncio
    async def test_custom_api_token_does_not_replace_conversation_token(
        self, manager_factory, account
    ):
        provider = FakeIdentityProvider(account=account)
        manager = manager_factory(provider)

        conversation = await manager.get_token()
        custom = await manager.get_token(TokenPurpose.CUSTOM_API)

        assert provider.silent_calls[-1] == ["api://custom/Read", "openid"]
        assert custom.value != conversation.value
        assert manager.current_token is conversation
        await manager.close()


class TestRefresh:
    def test_refresh_delay(self, manager_factory, account):
        manager = manager_factory(FakeIdentityProvider(account=account), clock=lambda: NOW)

        assert manager.refresh_delay(make_token(seconds=3600, now=NOW)) == 3540
        assert manager.refresh_delay(make_token(seconds=70, now=NOW)) == 30
        assert manager.refresh_delay(make_token(seconds=-5, now=NOW)) is None

    def test_token_validity_uses_skew(self):
        token = make_token(seconds=90, now=NOW)
        assert token.is_valid(NOW)
        assert not token.is_valid(NOW + timedelta(seconds=31))
        assert "token-1" not in repr(token)

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_token(self, manager_factory, reporter, account):
        provider = FakeIdentityProvider(account=account)
        manager = manager_factory(provider)
        token = await manager.get_token()

        provider.silent_error = IdentityError("offline", code="network_error")
        assert await manager.refresh() is None
        assert manager.current_token is token
        assert reporter.last is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_refresh_replaces_token(self, manager_factory, account):
        provider = FakeIdentityProvider(account=account)
        manager = manager_factory(provider)
        old = await manager.get_token()

        new = await manager.refresh()

        assert new.value != old.value
        assert manager.current_token is new
        await manager.close()

    @pytest.mark.asyncio
    async def test_ensure_token_refreshes_expired_token(self, manager_factory, account):
        provider = FakeIdentityProvider(account=account)
        manager = manager_factory(provider)
        manager._token = make_token("stale", seconds=-5)

        token = await manager.ensure_token()

        assert token.value == "token-1"
        await manager.close()

    @pytest.mark.asyncio
    async def test_ensure_token_none_when_refresh_fails(self, manager_factory, account):
        provider = FakeIdentityProvider(account=account)
        provider.silent_error = IdentityError("offline", code="network_error")
        manager = manager_factory(provider)
        manager._token = make_token("stale", seconds=-5)

        assert await manager.ensure_token() is None
        assert provider.interactive_calls == []

    @pytest.mark.asyncio
    async def test_ensure_token_never_prompts(self, manager_factory):
        provider = FakeIdentityProvider(account=None)
        manager = manager_factory(provider)

        assert await manager.ensure_token() is None
        assert provider.interactive_calls == []

    @pytest.mark.asyncio
    async def test_schedule_refresh_skips_expired_token(self, manager_factory, account):
        manager = manager_factory(FakeIdentityProvider(account=account), clock=lambda: NOW)
        manager.schedule_refresh(make_token(seconds=-1, now=NOW))
        assert manager._refresh_task is None


class TestSignOut:
    @pytest.mark.asyncio
    async def test_sign_out_drops_token(self, manager_factory, account):
        provider = FakeIdentityProvider(account=account)
        manager = manager_factory(provider)
        await manager.get_token()

        await manager.sign_out()

        assert manager.current_token is None
        assert provider.signed_out == [account]
        assert manager.account is None


class TestIdentityError:
    def test_codes_normalized(self):
        err = IdentityError("x", code="Consent_Required", subcode="")
        assert err.code == "consent_required"
        assert err.subcode is None
        assert err.interaction_required

    def test_not_interaction_required(self):
        assert not IdentityError("x", code="invalid_client").interaction_required

    def test_auth_result_carries_account(self, account):
        result = AuthResult(token=make_token(), account=account)
        assert result.account.label == "ada@contoso.com"
        assert Account("h").label == "Signed in"
