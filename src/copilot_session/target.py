"""
Agent target parsing.

The embedding host is configured with a Copilot Studio agent URL of the form
``https://<host>/environments/{environment_id}/bots/{bot_id}/...``. This module
validates that URL against the allowlist and extracts the identifiers the
connector needs.
"""

import re
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import urlsplit, urlunsplit

from copilot_session.errors import TargetValidationError

ALLOWED_AGENT_HOSTS = (
    "copilotstudio.microsoft.com",
    "copilotstudio-df.microsoft.com",
    "web.powervirtualagents.microsoft.com",
    "web.powervirtualagents-df.microsoft.com",
    "api.bap.microsoft.com",
)

_CANVAS_SEGMENT = re.compile(r"/canvas(?=/|$)", re.IGNORECASE)
_BOTS_SEGMENT = re.compile(r"/bots/", re.IGNORECASE)


@dataclass(frozen=True)
class AgentTarget:
    """Identifiers of the conversation the session connects to."""

    environment_id: str
    bot_id: str
    tenant_id: str = ""
    client_id: str = ""
    url: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.environment_id and self.bot_id)

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"


def _segment_after(parts: list[str], name: str) -> str:
    try:
        return parts[parts.index(name) + 1]
    except (ValueError, IndexError):
        return ""


def parse_agent_url(
    raw_url: str,
    *,
    tenant_id: str = "",
    client_id: str = "",
    allowed_hosts: Iterable[str] = ALLOWED_AGENT_HOSTS,
) -> AgentTarget:
    """
    Validate an agent URL and extract its environment and bot ids.

    Raises:
        TargetValidationError: empty, malformed, non-https, non-allowlisted
            host, or missing ``/bots/`` path.
    """
    candidate = (raw_url or "").strip()
    if not candidate:
        raise TargetValidationError("Agent URL is empty.", code="agent_url_empty")

    try:
        parts = urlsplit(candidate)
    except ValueError:
        raise TargetValidationError(
            "Invalid agent URL format.", code="agent_url_invalid"
        ) from None

    if parts.scheme != "https":
        raise TargetValidationError("Agent URL must use HTTPS.", code="agent_url_scheme")
    if parts.netloc.lower() not in {h.lower() for h in allowed_hosts}:
        raise TargetValidationError(
            "Agent host not in allowlist.", code="agent_url_host"
        )

    path = _CANVAS_SEGMENT.sub("/WebChat", parts.path, count=1)
    if not _BOTS_SEGMENT.search(path):
        raise TargetValidationError(
            "Agent URL must contain /bots/ path.", code="agent_url_path"
        )

    sanitized = urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))
    segments = [s for s in path.split("/") if s]
    return AgentTarget(
        environment_id=_segment_after(segments, "environments"),
        bot_id=_segment_after(segments, "bots"),
        tenant_id=tenant_id,
        client_id=client_id,
        url=sanitized,
    )
