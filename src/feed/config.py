"""Change feed configuration."""

import os
from dataclasses import dataclass, field

from config import config


@dataclass
class FeedConfig:
    """
    Configuration for the change-feed connection.

    All settings can be overridden via environment variables.
    """

    # WebSocket endpoint
    host: str = field(default_factory=lambda: os.getenv("MATRIX_FEED_HOST", "localhost"))
    port: int = field(default_factory=lambda: int(os.getenv("MATRIX_FEED_PORT", "9100")))
    path: str = field(default_factory=lambda: os.getenv("MATRIX_FEED_PATH", "/realtime"))
    secure: bool = field(
        default_factory=lambda: os.getenv("MATRIX_FEED_SECURE", "false").lower() == "true"
    )

    # REST endpoint of the durable store
    api_url: str = field(
        default_factory=lambda: os.getenv("MATRIX_API_URL", "http://localhost:9101/api")
    )
    api_token: str | None = field(default_factory=lambda: os.getenv("MATRIX_API_TOKEN"))

    # Subscription
    table: str = field(default_factory=lambda: config.FEED["table"])

    # Reconnect backoff
    reconnect_delay: float = field(default_factory=lambda: config.FEED["reconnect_delay"])
    max_reconnect_delay: float = field(
        default_factory=lambda: config.FEED["max_reconnect_delay"]
    )
    reconnect_multiplier: float = field(
        default_factory=lambda: config.FEED["reconnect_multiplier"]
    )

    @property
    def ws_url(self) -> str:
        """WebSocket change-feed URL."""
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.port}{self.path}"
