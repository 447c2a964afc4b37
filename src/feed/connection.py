"""Connection state machine for the change feed."""

import time
from dataclasses import dataclass
from enum import Enum


class ConnectionStatus(Enum):
    """Connection status states."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


@dataclass
class ConnectionState:
    """
    Tracks change-feed connection state.

    State machine:
        DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED
                                   -> ERROR -> CONNECTING (backoff)

    `reconnects` counts successful connections after the first; each one
    means events may have been missed and a resync is due.
    """

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    error_message: str | None = None
    connected_at: float | None = None
    disconnected_at: float | None = None
    connect_count: int = 0

    @property
    def reconnects(self) -> int:
        return max(0, self.connect_count - 1)

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def set_connecting(self) -> None:
        """Transition to CONNECTING state."""
        self.status = ConnectionStatus.CONNECTING
        self.error_message = None

    def set_connected(self) -> None:
        """Transition to CONNECTED state."""
        self.status = ConnectionStatus.CONNECTED
        self.connected_at = time.time()
        self.connect_count += 1
        self.error_message = None

    def set_error(self, message: str) -> None:
        """Transition to ERROR state."""
        self.status = ConnectionStatus.ERROR
        self.error_message = message
        self.disconnected_at = time.time()

    def set_disconnected(self) -> None:
        """Transition to DISCONNECTED state."""
        self.status = ConnectionStatus.DISCONNECTED
        self.connected_at = None
        self.disconnected_at = time.time()

    def to_dict(self) -> dict:
        """Serialize state to dictionary."""
        return {
            "status": self.status.value,
            "error_message": self.error_message,
            "connected_at": self.connected_at,
            "disconnected_at": self.disconnected_at,
            "connect_count": self.connect_count,
        }
