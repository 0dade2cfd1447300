"""
In-memory conversation transcript.

Entries are appended in arrival order and identified by a stable id. The only
way an existing entry changes is reconciliation: a later activity carrying the
same client activity id replaces the entry's content in place, and outbound
sends update their own entry's status.
"""

import itertools
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from copilot_session.logger import get_logger

logger = get_logger(__name__)


class EntryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class Role(str, Enum):
    USER = "user"
    AGENT = "agent"


@dataclass(frozen=True)
class TranscriptAttachment:
    id: str
    content_type: str
    content: str = ""
    name: str = "Attachment"
    content_url: Optional[str] = None
    payload: Any = field(default=None, repr=False)
    is_adaptive_card: bool = False
    is_oauth_card: bool = False


@dataclass(frozen=True)
class TranscriptAction:
    """A clickable affordance attached to an entry (e.g. a sign-in link)."""

    id: str
    type: str
    title: str
    value: str


@dataclass(frozen=True)
class TranscriptEntry:
    id: str
    role: Role = Role.AGENT
    text: str = ""
    attachments: tuple[TranscriptAttachment, ...] = ()
    actions: tuple[TranscriptAction, ...] = ()
    status: EntryStatus = EntryStatus.DELIVERED
    client_activity_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_pending(self) -> bool:
        return self.status is EntryStatus.PENDING

    @property
    def is_failed(self) -> bool:
        return self.status is EntryStatus.FAILED


class ClientActivityIds:
    """Generates ids for outbound activities: ``<prefix>-<epoch ms>-<seq>``."""

    def __init__(self, prefix: str = "client"):
        self.prefix = prefix
        self._seq = itertools.count(1)

    def next(self) -> str:
        return f"{self.prefix}-{int(time.time() * 1000)}-{next(self._seq)}"


TranscriptListener = Callable[[tuple[TranscriptEntry, ...]], None]


class TranscriptStore:
    """Ordered, reconciled log of transcript entries."""

    def __init__(self):
        self._entries: list[TranscriptEntry] = []
        self._listeners: list[TranscriptListener] = []

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TranscriptEntry]:
        return iter(tuple(self._entries))

    def add_listener(self, listener: TranscriptListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def get(self, entry_id: str) -> Optional[TranscriptEntry]:
        return next((e for e in self._entries if e.id == entry_id), None)

    def find_by_client_activity_id(
        self, client_activity_id: Optional[str]
    ) -> Optional[TranscriptEntry]:
        index = self._index_of(client_activity_id)
        return self._entries[index] if index >= 0 else None

    def append(self, entry: TranscriptEntry) -> TranscriptEntry:
        self._entries.append(entry)
        self._notify()
        return entry

    def mark_status(
        self,
        client_activity_id: Optional[str],
        status: EntryStatus,
        *,
        only_from: Optional[EntryStatus] = None,
    ) -> bool:
        """
        Update the status of the entry with ``client_activity_id``.

        Args:
            only_from: When set, the update only applies if the entry still
                has this status.
        """
        index = self._index_of(client_activity_id)
        if index < 0:
            return False
        if only_from is not None and self._entries[index].status is not only_from:
            return False
        self._replace(index, status=status)
        return True

    def reconcile(self, entry: TranscriptEntry) -> tuple[TranscriptEntry, bool]:
        """
        Merge an inbound entry into the transcript.

        If an entry with the same client activity id exists, its text,
        attachments, actions and status are replaced in place and its id is
        kept. Otherwise the entry is appended.

        Returns:
            (stored entry, replaced) tuple
        """
        index = self._index_of(entry.client_activity_id)
        if index < 0:
            return self.append(entry), False
        updated = self._replace(
            index,
            text=entry.text,
            attachments=entry.attachments,
            actions=entry.actions,
            status=EntryStatus.DELIVERED,
        )
        return updated, True

    def clear(self) -> None:
        if not self._entries:
            return
        self._entries = []
        self._notify()

    # -- Internal ------------------------------------------------------------

    def _index_of(self, client_activity_id: Optional[str]) -> int:
        if not client_activity_id:
            return -1
        for index, entry in enumerate(self._entries):
            if entry.client_activity_id == client_activity_id:
                return index
        return -1

    def _replace(self, index: int, **changes: Any) -> TranscriptEntry:
        updated = replace(self._entries[index], **changes)
        self._entries[index] = updated
        self._notify()
        return updated

    def _notify(self) -> None:
        snapshot = self.entries
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Transcript listener failed: {e}")
