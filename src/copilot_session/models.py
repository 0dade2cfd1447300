"""
Pydantic models for the bot-conversation activity protocol.

Covers the subset of the Direct Line activity schema the session consumes and
produces. Unknown fields are preserved so activities can be re-posted as-is.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

OAUTH_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.oauth"
ADAPTIVE_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.adaptive"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ChannelAccount(_WireModel):
    """Sender or recipient of an activity."""

    id: str = ""
    name: Optional[str] = None
    role: Optional[str] = None


class Attachment(_WireModel):
    content_type: str = Field(default="", alias="contentType")
    content: Any = None
    name: Optional[str] = None
    content_url: Optional[str] = Field(default=None, alias="contentUrl")

    @property
    def normalized_type(self) -> str:
        return (self.content_type or "").lower()


class CardAction(_WireModel):
    type: str = ""
    value: Any = None
    title: Optional[str] = None
    connection_name: Optional[str] = Field(default=None, alias="connectionName")


class SuggestedActions(_WireModel):
    actions: list[CardAction] = Field(default_factory=list)

    @field_validator("actions", mode="before")
    @classmethod
    def _drop_invalid(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [a for a in value if isinstance(a, dict)]
        return value


class Activity(_WireModel):
    """A single protocol-level conversation event."""

    type: str = ""
    id: Optional[str] = None
    from_: Optional[ChannelAccount] = Field(default=None, alias="from")
    text: Optional[str] = None
    speak: Optional[str] = None
    name: Optional[str] = None
    value: Any = None
    timestamp: Optional[str] = None
    reply_to_id: Optional[str] = Field(default=None, alias="replyToId")
    attachments: list[Attachment] = Field(default_factory=list)
    suggested_actions: Optional[SuggestedActions] = Field(
        default=None, alias="suggestedActions"
    )
    channel_data: Optional[dict[str, Any]] = Field(default=None, alias="channelData")

    @field_validator("attachments", mode="before")
    @classmethod
    def _keep_typed_attachments(cls, value: Any) -> Any:
        # Attachments without a content type carry nothing we can show.
        if value is None:
            return []
        if isinstance(value, list):
            return [a for a in value if isinstance(a, dict) and a.get("contentType")]
        return value

    @property
    def sender_role(self) -> str:
        return ((self.from_.role if self.from_ else None) or "").lower()

    @property
    def client_activity_id(self) -> Optional[str]:
        """Client-generated id echoed back by the service, if any."""
        if self.channel_data and self.channel_data.get("clientActivityID"):
            return self.channel_data["clientActivityID"]
        extra = self.model_extra or {}
        return extra.get("clientActivityID") or extra.get("clientActivityId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
