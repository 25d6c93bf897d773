"""Conversation memory: the bounded turn history of one session.

This is NOT the source of person metadata. session_count and last_seen live
on the person records and count every turn; this window only decides what
history is replayed to the model as context.

Only sanitized text is ever stored here. Callers pass the output of
sanitize(), never the raw message.

Usage:
    memory = ConversationMemory(window=10)
    memory.append(Turn(role="user", text="Hi, I'm [Person1]", ...))
    context = memory.windowed_history()  # oldest first, at most 10 turns
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..constants import DEFAULT_HISTORY_WINDOW
from ..types import Turn

logger = logging.getLogger(__name__)

__all__ = ["ConversationMemory"]


@dataclass
class ConversationMemory:
    """
    Ordered turn log truncated to the most recent `window` turns.

    Not thread-safe on its own; the owning session's lock serializes access.
    """

    window: int = DEFAULT_HISTORY_WINDOW

    _turns: List[Turn] = field(default_factory=list)

    # Turns ever appended, including those dropped from the window
    total_appended: int = 0

    def __post_init__(self):
        if self.window < 1:
            raise ValueError("window must be at least 1")

    def append(self, turn: Turn) -> None:
        """Record a turn, dropping the oldest ones beyond the window."""
        self._turns.append(turn)
        self.total_appended += 1

        if len(self._turns) > self.window:
            dropped = len(self._turns) - self.window
            self._turns = self._turns[-self.window:]
            logger.debug(f"Dropped {dropped} turn(s) from history window")

    def windowed_history(self) -> List[Turn]:
        """Most recent turns, oldest first."""
        return list(self._turns)

    def clear(self) -> None:
        """Forget all turns."""
        self._turns.clear()
        self.total_appended = 0

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the window. Contains NO raw PII (only sanitized text).
        """
        return {
            "window": self.window,
            "total_appended": self.total_appended,
            "turns": [t.to_dict() for t in self._turns],
        }

    def __len__(self) -> int:
        """Number of turns currently in the window."""
        return len(self._turns)
