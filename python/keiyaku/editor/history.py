"""
Undo/redo over full-document snapshots.

HistoryManager is the bounded stack itself. HistoryRecorder sits in front of it and
decides *when* a snapshot is worth pushing: keystrokes are coalesced over a quiet
period, and IME composition sessions only contribute their committed result.
"""

import time
from typing import Callable, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class HistoryManager:
    def __init__(self, capacity: int = 50):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._states: List[str] = []
        self._index = -1

    def initialize(self, state: str) -> None:
        self._states = [state]
        self._index = 0

    def push(self, state: str) -> None:
        # Anything after the cursor is a redo branch that no longer applies
        del self._states[self._index + 1 :]
        self._states.append(state)

        if len(self._states) > self.capacity:
            # Evict the oldest snapshot; the cursor keeps pointing at the newest
            self._states.pop(0)
        else:
            self._index += 1

    def undo(self) -> Optional[str]:
        if not self.can_undo():
            return None
        self._index -= 1
        return self._states[self._index]

    def redo(self) -> Optional[str]:
        if not self.can_redo():
            return None
        self._index += 1
        return self._states[self._index]

    def can_undo(self) -> bool:
        return self._index > 0

    def can_redo(self) -> bool:
        return self._index < len(self._states) - 1

    def clear(self) -> None:
        self._states = []
        self._index = -1

    @property
    def current(self) -> Optional[str]:
        return self._states[self._index] if self._index >= 0 else None

    @property
    def current_index(self) -> int:
        return self._index

    def __len__(self) -> int:
        return len(self._states)


class HistoryRecorder:
    """
    Coalesces high-frequency edits before they reach the history.

    The host calls record() on every change and poll() from its event loop (or a
    timer); a snapshot is pushed once `wait` seconds pass without a new record().
    While a composition is open nothing is buffered, and end_composition() pushes
    only the committed text.
    """

    def __init__(
        self,
        history: HistoryManager,
        wait: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.history = history
        self.wait = wait
        self.clock = clock
        self._pending: Optional[str] = None
        self._last_record = 0.0
        self._composing = False

    @property
    def composing(self) -> bool:
        return self._composing

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def record(self, state: str) -> None:
        if self._composing:
            return
        self._pending = state
        self._last_record = self.clock()

    def poll(self) -> bool:
        """Pushes the buffered state if the quiet period has elapsed. Returns True if it pushed."""
        if self._pending is None or self._composing:
            return False
        if self.clock() - self._last_record < self.wait:
            return False
        return self.flush()

    def flush(self) -> bool:
        """Pushes the buffered state now, skipping it if it equals the current snapshot."""
        state, self._pending = self._pending, None
        if state is None or state == self.history.current:
            return False
        self.history.push(state)
        return True

    def begin_composition(self) -> None:
        # Whatever was typed before the composition started is its own step
        self.flush()
        self._composing = True

    def end_composition(self, committed: Optional[str]) -> bool:
        """
        Closes the composition. `committed` is the document after the composition
        was accepted, or None if it was cancelled (nothing is recorded then).
        """
        self._composing = False
        if committed is None:
            logger.debug("Composition cancelled, nothing recorded")
            return False
        self._pending = committed
        return self.flush()
