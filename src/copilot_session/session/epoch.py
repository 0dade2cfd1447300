"""
Session epoch: the cancellation mechanism for stale async continuations.

Every asynchronous step captures a ticket when it is launched and checks
``ticket.is_current()`` when it resumes. Advancing the epoch invalidates every
outstanding ticket at once.
"""


class EpochTicket:
    __slots__ = ("_epoch", "value")

    def __init__(self, epoch: "SessionEpoch", value: int):
        self._epoch = epoch
        self.value = value

    def is_current(self) -> bool:
        return self._epoch.value == self.value

    def __repr__(self) -> str:
        return f"EpochTicket(value={self.value}, current={self.is_current()})"


class SessionEpoch:
    """Monotonically increasing session counter."""

    def __init__(self):
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def advance(self) -> EpochTicket:
        self._value += 1
        return EpochTicket(self, self._value)

    def capture(self) -> EpochTicket:
        return EpochTicket(self, self._value)
