"""
Inbound activity classification.

Each activity is matched against four handlers in a fixed order; the first one
that claims it wins:

1. OAuth card attachment      -> silent token handoff, visible sign-in fallback
2. Typing from the agent      -> transient typing flag
3. "signin" suggested action  -> silent token handoff, visible sign-in fallback
4. Message                    -> transcript entry (reconciled by client id)

Anything else is ignored. Malformed activities never raise out of ``route``.
"""

import json
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlsplit

from pydantic import ValidationError

from copilot_session.errors import TransportError
from copilot_session.identity.provider import Token
from copilot_session.logger import get_logger
from copilot_session.models import (
    ADAPTIVE_CARD_CONTENT_TYPE,
    OAUTH_CARD_CONTENT_TYPE,
    Activity,
    Attachment,
    CardAction,
    ChannelAccount,
)
from copilot_session.session.transcript import (
    ClientActivityIds,
    EntryStatus,
    Role,
    TranscriptAction,
    TranscriptAttachment,
    TranscriptEntry,
    TranscriptStore,
)
from copilot_session.session.typing import TypingIndicator

logger = get_logger(__name__)

DEFAULT_SIGNIN_TEXT = "Sign in is required."

PostActivity = Callable[[dict[str, Any]], Awaitable[None]]
# Returns a token that is valid right now, or None when none can be had silently.
TokenSource = Callable[[], Awaitable[Optional[Token]]]


class RouteKind(str, Enum):
    OAUTH_CARD = "oauth_card"
    TYPING = "typing"
    SIGNIN_ACTION = "signin_action"
    MESSAGE = "message"
    IGNORED = "ignored"


class OAuthHandoffRegistry:
    """Keys of sign-in prompts already handled in the current session."""

    def __init__(self):
        self._seen: set[str] = set()

    def claim(self, key: Optional[str]) -> bool:
        """
        Mark ``key`` as attempted.

        Returns:
            True if a handoff should be attempted. A missing key always
            allows an attempt and is not remembered.
        """
        if not key:
            return True
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

    def clear(self) -> None:
        self._seen.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._seen

    def __len__(self) -> int:
        return len(self._seen)


def is_safe_url(url: Any) -> bool:
    if not isinstance(url, str):
        return False
    try:
        return urlsplit(url.strip()).scheme == "https"
    except ValueError:
        return False


def _nested_name(content: dict[str, Any], key: str, attr: str) -> Optional[str]:
    value = content.get(key)
    if isinstance(value, dict):
        return value.get(attr) or None
    return None


class ActivityRouter:
    """Classifies inbound activities and applies their effects."""

    def __init__(
        self,
        transcript: TranscriptStore,
        typing: TypingIndicator,
        registry: OAuthHandoffRegistry,
        post_activity: PostActivity,
        token_source: TokenSource,
        user: Callable[[], ChannelAccount],
        ids: Optional[ClientActivityIds] = None,
    ):
        self._transcript = transcript
        self._typing = typing
        self._registry = registry
        self._post = post_activity
        self._token_source = token_source
        self._user = user
        self._ids = ids or ClientActivityIds()

    async def route(self, raw: dict[str, Any] | Activity) -> RouteKind:
        if raw is None:
            return RouteKind.IGNORED
        try:
            activity = raw if isinstance(raw, Activity) else Activity.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"Ignoring malformed activity ({e.error_count()} errors)")
            return RouteKind.IGNORED

        try:
            return await self._dispatch(activity)
        except Exception as e:
            logger.error(f"Error routing activity {activity.id!r} ({activity.type}): {e}")
            return RouteKind.IGNORED

    async def _dispatch(self, activity: Activity) -> RouteKind:
        if await self._try_oauth_card(activity):
            return RouteKind.OAUTH_CARD
        if self._try_agent_typing(activity):
            return RouteKind.TYPING
        if await self._try_signin_action(activity):
            return RouteKind.SIGNIN_ACTION
        if self._try_message(activity):
            return RouteKind.MESSAGE
        return RouteKind.IGNORED

    # -- Classifiers ---------------------------------------------------------

    async def _try_oauth_card(self, activity: Activity) -> bool:
        card = next(
            (a for a in activity.attachments if a.normalized_type == OAUTH_CARD_CONTENT_TYPE),
            None,
        )
        if card is None or not isinstance(card.content, dict) or not card.content:
            return False

        content = card.content
        connection_name = content.get("connectionName") or _nested_name(content, "connection", "name")
        exchange_id = _nested_name(content, "tokenExchangeResource", "id")
        key = connection_name or exchange_id or activity.id
        if self._registry.claim(key):
            await self._handle_oauth_card(content, connection_name, exchange_id)
        else:
            logger.debug(f"OAuth prompt {key!r} already handled this session")
        return True

    def _try_agent_typing(self, activity: Activity) -> bool:
        if activity.type == "typing" and activity.sender_role != "user":
            self._typing.set(True)
            return True
        return False

    async def _try_signin_action(self, activity: Activity) -> bool:
        actions = activity.suggested_actions.actions if activity.suggested_actions else []
        signin = next((a for a in actions if (a.type or "").lower() == "signin"), None)
        if signin is None or not signin.value:
            return False

        connection = (signin.model_extra or {}).get("connection")
        connection_name = signin.connection_name or (
            connection.get("name") if isinstance(connection, dict) else None
        )
        key = connection_name or (signin.value if isinstance(signin.value, str) else None) or activity.id
        if self._registry.claim(key):
            await self._handle_signin_action(activity, signin, connection_name)
        else:
            logger.debug(f"Sign-in action {key!r} already handled this session")
        return True

    def _try_message(self, activity: Activity) -> bool:
        if activity.type != "message":
            return False
        entry = self.build_entry(activity)
        stored, replaced = self._transcript.reconcile(entry)
        if replaced:
            logger.debug(f"Reconciled echo for {stored.client_activity_id}")
        if stored.role is not Role.USER:
            self._typing.clear()
        return True

    # -- Handoff -------------------------------------------------------------

    async def _handle_oauth_card(
        self,
        content: dict[str, Any],
        connection_name: Optional[str],
        exchange_id: Optional[str],
    ) -> None:
        text = content.get("text") or DEFAULT_SIGNIN_TEXT
        buttons = content.get("buttons") if isinstance(content.get("buttons"), list) else []
        button = next(
            (
                b
                for b in buttons
                if isinstance(b, dict) and (b.get("type") or "").lower() == "signin"
            ),
            None,
        )
        token = await self._token_source()
        if not token or not connection_name:
            self._render_signin_fallback(text, button)
            return

        # Invoke first, then the event. Which one the service expects first is unverified.
        payloads = [
            self._handoff_activity(
                "invoke",
                "signin/tokenExchange",
                {"id": exchange_id, "connectionName": connection_name, "token": token.value},
            ),
            self._handoff_activity(
                "event",
                "tokens/response",
                {"connectionName": connection_name, "token": token.value},
            ),
        ]
        if await self._post_all(payloads):
            logger.info(f"[OAuth][SSO] token handed off for connection {connection_name!r}")
        else:
            self._render_signin_fallback(text, button)

    async def _handle_signin_action(
        self, activity: Activity, signin: CardAction, connection_name: Optional[str]
    ) -> None:
        text = activity.text or DEFAULT_SIGNIN_TEXT
        button = {"value": signin.value, "title": signin.title}
        token = await self._token_source()
        if not token or not connection_name:
            self._render_signin_fallback(text, button)
            return

        value = {"connectionName": connection_name, "token": token.value}
        payloads = [
            self._handoff_activity("event", "tokens/response", value),
            self._handoff_activity("invoke", "signin/tokenExchange", value),
        ]
        if await self._post_all(payloads):
            logger.info(f"[OAuth][SSO] sign-in action satisfied for {connection_name!r}")
        else:
            self._render_signin_fallback(text, button)

    def _handoff_activity(self, type_: str, name: str, value: dict[str, Any]) -> dict[str, Any]:
        return Activity(type=type_, name=name, value=value, from_=self._user()).to_wire()

    async def _post_all(self, payloads: list[dict[str, Any]]) -> bool:
        try:
            for payload in payloads:
                await self._post(payload)
        except TransportError as e:
            logger.debug(f"[OAuth][SSO] handoff failed: {e}")
            return False
        return True

    def _render_signin_fallback(self, text: str, button: Optional[dict[str, Any]]) -> None:
        self._typing.clear()
        url = button.get("value") if button else None
        actions: tuple[TranscriptAction, ...] = ()
        if is_safe_url(url):
            actions = (
                TranscriptAction(
                    id=self._ids.next(),
                    type="openUrl",
                    title=button.get("title") or "Sign in",
                    value=url,
                ),
            )
        elif url:
            logger.warning(f"Sign-in fallback URL blocked (unsafe scheme): {url}")
        self._transcript.append(
            TranscriptEntry(id=self._ids.next(), role=Role.AGENT, text=text, actions=actions)
        )

    # -- Message mapping -----------------------------------------------------

    def build_entry(self, activity: Activity) -> TranscriptEntry:
        """Map a message activity onto a transcript entry."""
        entry_id = activity.id or self._ids.next()
        kwargs = {}
        if activity.timestamp:
            kwargs["timestamp"] = activity.timestamp
        return TranscriptEntry(
            id=entry_id,
            role=Role.USER if activity.sender_role == "user" else Role.AGENT,
            text=activity.text or activity.speak or "",
            attachments=tuple(
                self._map_attachment(att, activity.id or activity.reply_to_id or entry_id, idx)
                for idx, att in enumerate(activity.attachments)
            ),
            status=EntryStatus.DELIVERED,
            client_activity_id=activity.client_activity_id,
            **kwargs,
        )

    @staticmethod
    def _map_attachment(att: Attachment, owner_id: str, index: int) -> TranscriptAttachment:
        content = att.content
        if isinstance(content, str):
            text = content
        elif content:
            text = json.dumps(content, indent=2, ensure_ascii=False, default=str)
        else:
            text = ""
        content_type = att.normalized_type
        return TranscriptAttachment(
            id=f"{owner_id}-att-{index}",
            content_type=content_type,
            content=text,
            name=att.name or att.content_type or "Attachment",
            content_url=att.content_url,
            payload=content,
            is_adaptive_card=content_type == ADAPTIVE_CARD_CONTENT_TYPE,
            is_oauth_card=content_type == OAUTH_CARD_CONTENT_TYPE,
        )
