"""
Scope selection.

A single token request must not mix resource audiences, so the configured
scope list is partitioned and one resource is picked per call purpose.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

OIDC_SCOPES = ("openid", "profile", "email", "offline_access")

CONVERSATION_RESOURCE = "https://api.powerplatform.com/"
DEFAULT_CONVERSATION_SCOPE = (
    "https://api.powerplatform.com/CopilotStudio.Copilots.Invoke"
)

# Most specific first: modern delegated scope, legacy impersonation, .default
CONVERSATION_SCOPE_PREFERENCE = (
    re.compile(r"/CopilotStudio\.Copilots\.Invoke$", re.IGNORECASE),
    re.compile(r"user_impersonation$", re.IGNORECASE),
    re.compile(r"\.default$", re.IGNORECASE),
)


class TokenPurpose(str, Enum):
    CONVERSATION = "conversation"
    CUSTOM_API = "custom_api"


@dataclass
class ScopeBuckets:
    conversation: list[str] = field(default_factory=list)
    custom_api: list[str] = field(default_factory=list)
    others: list[str] = field(default_factory=list)


class ScopeSelector:
    """Computes the scope list for each token purpose."""

    def __init__(self, scopes: Sequence[str], custom_api_resource: Optional[str] = None):
        self.scopes = [s for s in scopes if s]
        self.custom_api_resource = custom_api_resource or None

    @property
    def oidc_scopes(self) -> list[str]:
        return [s for s in OIDC_SCOPES if s in self.scopes]

    def partition(self) -> ScopeBuckets:
        buckets = ScopeBuckets()
        for scope in self.scopes:
            if scope in OIDC_SCOPES:
                continue
            if scope.startswith(CONVERSATION_RESOURCE):
                buckets.conversation.append(scope)
            elif self.custom_api_resource and scope.startswith(self.custom_api_resource):
                buckets.custom_api.append(scope)
            else:
                buckets.others.append(scope)
        return buckets

    def conversation_scopes(self) -> list[str]:
        candidates = self.partition().conversation
        required = None
        for pattern in CONVERSATION_SCOPE_PREFERENCE:
            required = next((s for s in candidates if pattern.search(s)), None)
            if required:
                break
        if not required and candidates:
            required = candidates[0]
        return [required or DEFAULT_CONVERSATION_SCOPE, *self.oidc_scopes]

    def custom_api_scopes(self) -> list[str]:
        custom = self.partition().custom_api
        if not custom:
            return []
        return [custom[0], *self.oidc_scopes]

    def for_purpose(self, purpose: TokenPurpose) -> list[str]:
        if purpose == TokenPurpose.CUSTOM_API:
            return self.custom_api_scopes()
        return self.conversation_scopes()
