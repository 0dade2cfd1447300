"""
Transient "agent is typing" flag that clears itself after a timeout.
"""

import asyncio
from typing import Callable, Optional

DEFAULT_TYPING_TTL = 5.0


class TypingIndicator:
    def __init__(
        self,
        default_ttl: float = DEFAULT_TYPING_TTL,
        on_change: Optional[Callable[[bool], None]] = None,
    ):
        self.default_ttl = default_ttl
        self._on_change = on_change
        self._active = False
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def is_typing(self) -> bool:
        return self._active

    def set(self, active: bool, ttl: Optional[float] = None) -> None:
        """Turn the flag on for ``ttl`` seconds (default TTL), or off now."""
        self._cancel_timer()
        if active:
            loop = asyncio.get_running_loop()
            delay = self.default_ttl if ttl is None else ttl
            self._timer = loop.call_later(delay, self._expire)
        self._update(active)

    def clear(self) -> None:
        self.set(False)

    def _expire(self) -> None:
        self._timer = None
        self._update(False)

    def _cancel_timer(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None

    def _update(self, active: bool) -> None:
        changed = active != self._active
        self._active = active
        if changed and self._on_change:
            self._on_change(active)
