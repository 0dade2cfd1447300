"""
Session controller: the top-level state machine.

States:
    IDLE -> AUTHENTICATING -> CONNECTING -> ACTIVE -> (RESETTING -> IDLE | FAILED)

The controller owns the session epoch and the single active channel. Every
continuation captures an epoch ticket before it suspends; when it resumes
under a newer epoch it disposes what it produced and leaves state untouched.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from copilot_session.channels.base import Channel
from copilot_session.channels.establisher import ConnectionEstablisher
from copilot_session.context import SessionContext
from copilot_session.errors import (
    ErrorKind,
    ErrorReport,
    SessionError,
    TargetValidationError,
    TransportError,
)
from copilot_session.identity.scopes import TokenPurpose
from copilot_session.logger import get_logger
from copilot_session.models import Activity, ChannelAccount
from copilot_session.session.epoch import EpochTicket, SessionEpoch
from copilot_session.session.router import ActivityRouter, OAuthHandoffRegistry
from copilot_session.session.transcript import (
    ClientActivityIds,
    EntryStatus,
    Role,
    TranscriptEntry,
    TranscriptStore,
)
from copilot_session.session.typing import TypingIndicator
from copilot_session.target import AgentTarget

logger = get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    CONNECTING = "connecting"
    ACTIVE = "active"
    RESETTING = "resetting"
    FAILED = "failed"


StateListener = Callable[[SessionState], None]


class SessionController:
    """
    Composes identity, negotiation, routing and the transcript.

    Callers (the UI layer) use ``start``, ``send``, ``restart`` and
    ``teardown``, and read ``transcript``, ``is_agent_typing``, ``state`` and
    ``last_error``.
    """

    def __init__(self, context: SessionContext):
        self._ctx = context
        config = context.config
        self.transcript = TranscriptStore()
        self.typing = TypingIndicator(default_ttl=config.typing_ttl)
        self.send_typing_ttl = config.send_typing_ttl
        self._epoch = SessionEpoch()
        self._ids = ClientActivityIds()
        self._registry = OAuthHandoffRegistry()
        self._establisher = ConnectionEstablisher(context)
        self._router = ActivityRouter(
            self.transcript,
            self.typing,
            self._registry,
            post_activity=self._post_activity,
            token_source=context.identity.ensure_token,
            user=self._user_account,
            ids=self._ids,
        )
        self._state = SessionState.IDLE
        self._state_listeners: list[StateListener] = []
        self._channel: Optional[Channel] = None
        self._consumer: Optional[asyncio.Task] = None
        self._started = False
        self._connecting = False

    # -- Observers -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch.value

    @property
    def channel(self) -> Optional[Channel]:
        return self._channel

    @property
    def is_agent_typing(self) -> bool:
        return self.typing.is_typing

    @property
    def last_error(self) -> Optional[ErrorReport]:
        return self._ctx.reporter.last

    @property
    def registry(self) -> OAuthHandoffRegistry:
        return self._registry

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)

        def remove() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return remove

    def debug_snapshot(self) -> dict[str, Any]:
        identity = self._ctx.identity
        token = identity.current_token
        account = identity.account
        return {
            "state": self._state.value,
            "epoch": self._epoch.value,
            "started": self._started,
            "connecting": self._connecting,
            "channel": self._channel.kind if self._channel else None,
            "account": account.label if account else None,
            "has_token": bool(token),
            "token_expires": token.expires_on.isoformat() if token else None,
            "transcript_entries": len(self.transcript),
            "handled_signin_prompts": len(self._registry),
            "last_error": self.last_error.format() if self.last_error else None,
        }

    # -- Operations ----------------------------------------------------------

    async def start(self) -> None:
        """Authenticate and connect. No-op while started or connecting."""
        if self._started or self._connecting:
            return
        self._connecting = True
        ticket = self._epoch.advance()
        try:
            await self._start(ticket)
        finally:
            if ticket.is_current():
                self._connecting = False

    async def send(self, text: str) -> Optional[TranscriptEntry]:
        """
        Send a user message.

        The entry is appended as pending right away and moves to ``sent`` or
        ``failed`` once the post completes.

        Returns:
            The transcript entry, or None when nothing was sent.
        """
        text = (text or "").strip()
        if not text:
            return None
        if self._state is not SessionState.ACTIVE:
            logger.debug(f"Send skipped: session is {self._state.value}")
            return None

        ticket = self._epoch.capture()
        client_activity_id = self._ids.next()
        self.transcript.append(
            TranscriptEntry(
                id=client_activity_id,
                role=Role.USER,
                text=text,
                status=EntryStatus.PENDING,
                client_activity_id=client_activity_id,
            )
        )
        self.typing.set(True, ttl=self.send_typing_ttl)

        payload = Activity(
            type="message",
            from_=self._user_account(),
            text=text,
            channel_data={"clientActivityID": client_activity_id},
        ).to_wire()

        try:
            await self._post_activity(payload)
        except SessionError as e:
            if ticket.is_current():
                self.transcript.mark_status(client_activity_id, EntryStatus.FAILED)
                self.typing.clear()
                self._ctx.reporter.report(e)
            return self.transcript.find_by_client_activity_id(client_activity_id)

        if ticket.is_current():
            # An echo may already have marked it delivered.
            self.transcript.mark_status(
                client_activity_id, EntryStatus.SENT, only_from=EntryStatus.PENDING
            )
        return self.transcript.find_by_client_activity_id(client_activity_id)

    async def submit_card_action(self, data: Any) -> bool:
        """Forward an adaptive card ``Action.Submit`` to the agent."""
        if self._state is not SessionState.ACTIVE:
            return False
        payload = Activity(
            type="event", name="adaptiveCard/action", value=data, from_=self._user_account()
        ).to_wire()
        try:
            await self._post_activity(payload)
        except SessionError as e:
            self._ctx.reporter.report(e)
            return False
        return True

    async def restart(self, *, preserve_transcript: bool = True) -> None:
        """Invalidate the current session and start a new one."""
        self._set_state(SessionState.RESETTING)
        ticket = await self._reset(clear_transcript=not preserve_transcript)
        if not ticket.is_current():
            # A newer restart or teardown owns the session now.
            return
        self._set_state(SessionState.IDLE)
        await self.start()

    async def teardown(self) -> None:
        """Invalidate the session and clear the transcript."""
        self._set_state(SessionState.RESETTING)
        ticket = await self._reset(clear_transcript=True)
        if ticket.is_current():
            self._set_state(SessionState.IDLE)

    async def sign_out(self) -> None:
        await self.teardown()
        await self._ctx.identity.sign_out()

    # -- Internal ------------------------------------------------------------

    async def _start(self, ticket: EpochTicket) -> None:
        target = self._resolve_target()
        if target is None:
            return

        self._set_state(SessionState.AUTHENTICATING)
        token = await self._ctx.identity.get_token(TokenPurpose.CONVERSATION)
        if not ticket.is_current():
            return
        if token is None:
            if self._ctx.identity.account is None:
                self._set_state(SessionState.FAILED)
            else:
                self._set_state(SessionState.IDLE)
            return

        self._set_state(SessionState.CONNECTING)
        try:
            channel = await self._establisher.establish(
                token, target, ticket, is_active=lambda: self._is_live(ticket)
            )
        except (SessionError, httpx.HTTPError) as e:
            if ticket.is_current():
                self._ctx.reporter.report(e, ErrorKind.NEGOTIATION)
                self._set_state(SessionState.IDLE)
            return

        if not ticket.is_current():
            if channel is not None:
                await channel.close()
            return
        if channel is None:
            self._set_state(SessionState.IDLE)
            return
        self._adopt(channel, ticket)

    def _resolve_target(self) -> Optional[AgentTarget]:
        config = self._ctx.config
        if not config.has_target:
            logger.debug("Session start skipped: no agent URL configured")
            return None
        try:
            return config.agent_target()
        except TargetValidationError as e:
            self._ctx.reporter.report(e)
            self._set_state(SessionState.FAILED)
            return None

    def _adopt(self, channel: Channel, ticket: EpochTicket) -> None:
        self._channel = channel
        self._registry.clear()
        self.typing.clear()
        self._started = True
        self._set_state(SessionState.ACTIVE)
        self._consumer = asyncio.create_task(self._consume(channel, ticket))
        logger.info(f"Session {ticket.value} active over {channel.kind} channel")

    async def _consume(self, channel: Channel, ticket: EpochTicket) -> None:
        try:
            async for activity in channel.activities():
                if not ticket.is_current():
                    break
                await self._router.route(activity)
        except Exception as e:
            if ticket.is_current():
                self._ctx.reporter.report(
                    TransportError(f"Activity stream failed: {e}", code="stream_failed")
                )

    async def _post_activity(self, activity: dict[str, Any]) -> None:
        channel = self._channel
        if channel is None:
            raise TransportError("Direct Line not ready", code="channel_not_ready")
        await channel.post_activity(activity)

    async def _reset(self, *, clear_transcript: bool) -> EpochTicket:
        """
        Invalidate the current epoch and dispose the channel and consumer.

        Returns:
            The ticket of the new epoch. Cleanup after the awaits only runs
            while it is still current.
        """
        ticket = self._epoch.advance()
        self._started = False
        self._connecting = False
        channel, consumer = self._channel, self._consumer
        self._channel = None
        self._consumer = None

        if consumer and consumer is not asyncio.current_task():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
        if channel is not None:
            await channel.close()
        if not ticket.is_current():
            return ticket

        self._registry.clear()
        self.typing.clear()
        if clear_transcript:
            self.transcript.clear()
        return ticket

    def _is_live(self, ticket: EpochTicket) -> bool:
        return ticket.is_current() and self._state is SessionState.ACTIVE

    def _user_account(self) -> ChannelAccount:
        account = self._ctx.identity.account
        name = account.label if account else self._ctx.config.user_name
        return ChannelAccount(id=self._ctx.config.user_id, name=name)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug(f"Session state {self._state.value} -> {state.value}")
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")
