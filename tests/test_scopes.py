"""
Unit tests for scope selection.
"""

from copilot_session.identity.scopes import (
    DEFAULT_CONVERSATION_SCOPE,
    ScopeSelector,
    TokenPurpose,
)

PP = "https://api.powerplatform.com"


class TestConversationScopes:
    def test_prefers_copilots_invoke(self):
        selector = ScopeSelector(
            [
                f"{PP}/.default",
                f"{PP}/user_impersonation",
                f"{PP}/CopilotStudio.Copilots.Invoke",
            ]
        )
        assert selector.conversation_scopes() == [f"{PP}/CopilotStudio.Copilots.Invoke"]

    def test_falls_back_to_user_impersonation(self):
        selector = ScopeSelector([f"{PP}/.default", f"{PP}/user_impersonation"])
        assert selector.conversation_scopes() == [f"{PP}/user_impersonation"]

    def test_falls_back_to_default_scope(self):
        selector = ScopeSelector([f"{PP}/Other.Scope", f"{PP}/.default"])
        assert selector.conversation_scopes() == [f"{PP}/.default"]

    def test_first_power_platform_scope_when_nothing_preferred(self):
        selector = ScopeSelector([f"{PP}/Other.Scope", f"{PP}/Another.Scope"])
        assert selector.conversation_scopes() == [f"{PP}/Other.Scope"]

    def test_hardcoded_default_when_none_configured(self):
        selector = ScopeSelector(["openid", "api://custom/Read"])
        assert selector.conversation_scopes() == [DEFAULT_CONVERSATION_SCOPE, "openid"]

    def test_oidc_scopes_are_appended(self):
        selector = ScopeSelector(
            ["profile", f"{PP}/CopilotStudio.Copilots.Invoke", "openid", "offline_access"]
        )
        assert selector.conversation_scopes() == [
            f"{PP}/CopilotStudio.Copilots.Invoke",
            "openid",
            "profile",
            "offline_access",
        ]

    def test_never_mixes_resources(self):
        selector = ScopeSelector(
            [f"{PP}/CopilotStudio.Copilots.Invoke", "api://custom/Read"],
            custom_api_resource="api://custom",
        )
        scopes = selector.conversation_scopes()
        assert all(not s.startswith("api://custom") for s in scopes)


class TestCustomApiScopes:
    def test_custom_api_scope_selected(self):
        selector = ScopeSelector(
            [f"{PP}/CopilotStudio.Copilots.Invoke", "api://custom/Read", "openid"],
            custom_api_resource="api://custom",
        )
        assert selector.for_purpose(TokenPurpose.CUSTOM_API) == ["api://custom/Read", "openid"]

    def test_no_custom_resource_configured(self):
        selector = ScopeSelector(["api://custom/Read"])
        assert selector.custom_api_scopes() == []
        assert selector.partition().others == ["api://custom/Read"]

    def test_partition_skips_oidc(self):
        buckets = ScopeSelector(["openid", f"{PP}/.default"]).partition()
        assert buckets.conversation == [f"{PP}/.default"]
        assert buckets.custom_api == []
        assert buckets.others == []
