"""
Configuration for copilot_session.

Values come from keyword arguments or, via ``SessionConfig.from_env``, from
``COPILOT_*`` environment variables (a ``.env`` file is loaded first).
"""

import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from copilot_session.target import ALLOWED_AGENT_HOSTS, AgentTarget, parse_agent_url

DEFAULT_TRANSPORT_DOMAIN = "https://directline.botframework.com"

# Environment variable -> field name
_ENV_FIELDS = {
    "COPILOT_CLIENT_ID": "client_id",
    "COPILOT_TENANT_ID": "tenant_id",
    "COPILOT_AGENT_URL": "agent_url",
    "COPILOT_SCOPES": "scopes",
    "COPILOT_CUSTOM_API_RESOURCE": "custom_api_resource",
    "COPILOT_TOKEN_ENDPOINT": "token_endpoint",
    "COPILOT_TRANSPORT_DOMAIN": "transport_domain",
    "COPILOT_POLL_INTERVAL": "poll_interval",
    "COPILOT_POLL_RETRY_DELAY": "poll_retry_delay",
    "COPILOT_POLL_TIMEOUT": "poll_timeout",
    "COPILOT_USER_NAME": "user_name",
}


class SessionConfig(BaseModel):
    """Settings shared by every component of one embedding."""

    client_id: str = ""
    tenant_id: str = ""
    agent_url: str = ""
    scopes: list[str] = Field(default_factory=list)
    custom_api_resource: Optional[str] = None
    token_endpoint: Optional[str] = None
    transport_domain: str = DEFAULT_TRANSPORT_DOMAIN
    allowed_agent_hosts: list[str] = Field(
        default_factory=lambda: list(ALLOWED_AGENT_HOSTS)
    )

    # Polling transport (seconds)
    poll_interval: float = 0.8
    poll_retry_delay: float = 1.2
    poll_timeout: float = 20.0

    # Typing indicator (seconds)
    typing_ttl: float = 5.0
    send_typing_ttl: float = 12.0

    # Token lifetime handling (seconds)
    token_expiry_skew: float = 60.0
    min_refresh_delay: float = 30.0

    user_id: str = "user"
    user_name: str = "You"

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.split()
        return value

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    @property
    def has_target(self) -> bool:
        return bool(self.agent_url.strip())

    def agent_target(self) -> AgentTarget:
        """Parse ``agent_url``; raises TargetValidationError when it is unusable."""
        return parse_agent_url(
            self.agent_url,
            tenant_id=self.tenant_id,
            client_id=self.client_id,
            allowed_hosts=self.allowed_agent_hosts,
        )

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides: Any) -> "SessionConfig":
        """Build a config from the process environment (and an optional .env file)."""
        load_dotenv(env_file)
        values: dict[str, Any] = {}
        for env_name, field_name in _ENV_FIELDS.items():
            raw = os.getenv(env_name)
            if raw not in (None, ""):
                values[field_name] = raw
        values.update(overrides)
        return cls(**values)
