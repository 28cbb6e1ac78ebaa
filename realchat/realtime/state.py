from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from realchat.core.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
POLICY_VIOLATION = 1008
AUTH_FAILURE_CLOSE = 4001
AUTH_FAILED_ATTEMPT_SENTINEL = 10


class ConnectionStatus(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    AUTH_FAILED = "auth_failed"
    ERROR = "error"
    FAILED = "failed"


_TRANSITIONS: dict[ConnectionStatus, frozenset[ConnectionStatus]] = {
    ConnectionStatus.DISCONNECTED: frozenset({ConnectionStatus.CONNECTING}),
    ConnectionStatus.CONNECTING: frozenset(
        {
            ConnectionStatus.CONNECTED,
            ConnectionStatus.DISCONNECTED,
            ConnectionStatus.RECONNECTING,
            ConnectionStatus.AUTH_FAILED,
            ConnectionStatus.ERROR,
            ConnectionStatus.FAILED,
        }
    ),
    ConnectionStatus.CONNECTED: frozenset(
        {
            ConnectionStatus.DISCONNECTED,
            ConnectionStatus.RECONNECTING,
            ConnectionStatus.AUTH_FAILED,
            ConnectionStatus.ERROR,
            ConnectionStatus.FAILED,
        }
    ),
    ConnectionStatus.RECONNECTING: frozenset({ConnectionStatus.CONNECTING, ConnectionStatus.DISCONNECTED}),
    ConnectionStatus.ERROR: frozenset(
        {
            ConnectionStatus.RECONNECTING,
            ConnectionStatus.DISCONNECTED,
            ConnectionStatus.FAILED,
            ConnectionStatus.CONNECTING,
        }
    ),
    ConnectionStatus.FAILED: frozenset({ConnectionStatus.CONNECTING, ConnectionStatus.DISCONNECTED}),
    ConnectionStatus.AUTH_FAILED: frozenset({ConnectionStatus.DISCONNECTED}),
}


def can_transition(current: ConnectionStatus, target: ConnectionStatus) -> bool:
    return current == target or target in _TRANSITIONS[current]


def is_auth_failure(code: int | None, reason: str | None) -> bool:
    if code in (POLICY_VIOLATION, AUTH_FAILURE_CLOSE):
        return True
    return bool(reason) and "auth" in reason.lower()


def reconnect_delay(attempt: int, *, base_ms: int = 1000, max_ms: int = 30000) -> int:
    if attempt < 0:
        raise ValueError("attempt must be non-negative")
    return min(base_ms * (2**attempt), max_ms)


@dataclass
class SessionState:
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    reconnect_attempt: int = 0

    def transition(self, target: ConnectionStatus) -> bool:
        if self.status == target:
            return False
        if not can_transition(self.status, target):
            raise InvalidTransitionError(self.status.value, target.value)
        logger.debug("Connection status %s -> %s", self.status.value, target.value)
        self.status = target
        return True
