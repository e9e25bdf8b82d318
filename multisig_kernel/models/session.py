"""Approval session lifecycle states."""

from enum import Enum


class SessionState(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    DECLINED = "declined"

    @property
    def terminal(self) -> bool:
        return self is not SessionState.OPEN
