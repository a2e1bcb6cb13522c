"""
Constants and configuration for Session Stream.
Centralizes all magic numbers and configuration values.
Includes Pydantic validation for environment variables.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ============================================================================
# Project Paths
# ============================================================================

#: Project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# ============================================================================
# Logging Configuration
# ============================================================================

#: Maximum size in bytes for log files before rotation (10MB).
LOG_MAX_SIZE = 10 * 1024 * 1024

#: Number of stream log backups to retain during rotation.
LOG_BACKUP_COUNT_STREAMS = 5

#: Number of error log backups to retain during rotation.
LOG_BACKUP_COUNT_ERRORS = 3

#: Length of the per-process logger instance id (hex characters).
LOGGER_ID_LENGTH = 8

# ============================================================================
# Session Lifecycle Defaults
# ============================================================================

#: Sessions idle (no subscribers, no generation) longer than this are evicted.
DEFAULT_SESSION_IDLE_TIMEOUT = 600.0

#: How often the idle reaper sweeps the registry (seconds).
DEFAULT_REAPER_INTERVAL = 60.0

#: Maximum undelivered chunks buffered per subscriber before it is dropped.
DEFAULT_SUBSCRIBER_QUEUE_SIZE = 1000

#: Upper bound for a single subscriber callback invocation (seconds).
DEFAULT_SUBSCRIBER_CALLBACK_TIMEOUT = 10.0

#: Time the upstream gets to close after a stop before its task is cancelled.
DEFAULT_CANCEL_GRACE_PERIOD = 5.0

#: Message published as the synthesized terminal error of a stopped generation.
CANCELLED_ERROR_MESSAGE = "Generation cancelled"

#: Message given to subscribers when their session is closed.
SESSION_CLOSED_MESSAGE = "Session closed"

# ============================================================================
# Stream Chunk Types (upstream vocabulary)
# ============================================================================

CHUNK_TYPE_TEXT = "text"
CHUNK_TYPE_TOOL_USE = "tool_use"
CHUNK_TYPE_TOOL_RESULT = "tool_result"
CHUNK_TYPE_USAGE = "usage"
CHUNK_TYPE_DONE = "done"
CHUNK_TYPE_ERROR = "error"

#: Chunk types that end a generation. Exactly one is delivered per generation.
TERMINAL_CHUNK_TYPES = frozenset({CHUNK_TYPE_DONE, CHUNK_TYPE_ERROR})

# ============================================================================
# Server Message Types (wire vocabulary, shared by SSE and WebSocket)
# ============================================================================

MSG_TYPE_TEXT_DELTA = "text_delta"
MSG_TYPE_TOOL_CALL = "tool_call"
MSG_TYPE_TOOL_RESULT = "tool_result"
MSG_TYPE_MESSAGE_COMPLETE = "message_complete"
MSG_TYPE_ERROR = "error"
MSG_TYPE_PING = "ping"

#: Server messages after which an SSE response is closed.
FINAL_MESSAGE_TYPES = frozenset({MSG_TYPE_MESSAGE_COMPLETE, MSG_TYPE_ERROR})

# ============================================================================
# Client Message Types (WebSocket inbound)
# ============================================================================

CLIENT_MSG_MESSAGE = "message"
CLIENT_MSG_CANCEL = "cancel"
CLIENT_MSG_SESSION = "session"

# ============================================================================
# Transport Limits
# ============================================================================

#: Max chat message length in characters.
MAX_MESSAGE_LENGTH = 100_000

#: Max raw WebSocket frame size accepted from clients (bytes).
MAX_WS_PAYLOAD_SIZE = 1_000_000

#: Response headers for SSE streams.
SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

#: Header carrying the session id of an SSE chat response.
SESSION_ID_HEADER = "X-Session-Id"

# ============================================================================
# Environment Configuration with Pydantic Validation
# ============================================================================


class Settings(BaseSettings):
    """Environment settings with validation.

    Loads from environment variables and .env file.
    Validates at startup to fail fast on configuration errors.
    """

    # Optional debug setting
    debug: bool = Field(default=False, description="Enable debug logging")

    # Upstream agent (OpenAI-compatible). Without a key the echo client is used.
    openai_api_key: str | None = Field(default=None, description="OpenAI API key for the upstream agent")
    openai_base_url: str | None = Field(default=None, description="Optional OpenAI-compatible base URL")
    openai_model: str = Field(default="gpt-4o-mini", description="Model used for generations")
    http_read_timeout: float = Field(default=600.0, description="HTTP read timeout for streaming (seconds)")

    # Persistence. Without a URL messages are kept in memory.
    database_url: str | None = Field(default=None, description="PostgreSQL connection string for message storage")
    db_pool_min_size: int = Field(default=1, description="Minimum PostgreSQL connections")
    db_pool_max_size: int = Field(default=10, description="Maximum PostgreSQL connections")

    # API server
    api_port: int = Field(default=8000, description="FastAPI port")
    api_host: str = Field(default="0.0.0.0", description="FastAPI host")

    # Session streaming core
    session_idle_timeout: float = Field(
        default=DEFAULT_SESSION_IDLE_TIMEOUT,
        description="Evict sessions without subscribers or activity for this long (seconds)",
    )
    reaper_interval: float = Field(default=DEFAULT_REAPER_INTERVAL, description="Idle sweep interval (seconds)")
    subscriber_queue_size: int = Field(
        default=DEFAULT_SUBSCRIBER_QUEUE_SIZE,
        description="Undelivered chunks buffered per subscriber before it is dropped",
    )
    subscriber_callback_timeout: float = Field(
        default=DEFAULT_SUBSCRIBER_CALLBACK_TIMEOUT,
        description="Max time a subscriber callback may take per chunk (seconds)",
    )
    cancel_grace_period: float = Field(
        default=DEFAULT_CANCEL_GRACE_PERIOD,
        description="Time the upstream gets to close after stop before it is cancelled (seconds)",
    )

    # WebSocket transport
    ws_heartbeat_interval: float = Field(default=30.0, description="WebSocket ping interval (seconds)")
    ws_message_rate_limit: int = Field(default=60, description="Max chat messages per session per window")
    ws_message_rate_window: float = Field(default=60.0, description="Rate limit window (seconds)")

    max_message_length: int = Field(default=MAX_MESSAGE_LENGTH, description="Max chat message length (chars)")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator(
        "session_idle_timeout",
        "reaper_interval",
        "subscriber_callback_timeout",
        "cancel_grace_period",
        "ws_heartbeat_interval",
        "ws_message_rate_window",
        "http_read_timeout",
    )
    @classmethod
    def validate_positive_duration(cls, v: float) -> float:
        """Durations must be strictly positive."""
        if v <= 0:
            raise ValueError("duration settings must be greater than 0")
        return v

    @field_validator("subscriber_queue_size", "ws_message_rate_limit", "max_message_length")
    @classmethod
    def validate_positive_size(cls, v: int) -> int:
        """Sizes and limits must be at least 1."""
        if v < 1:
            raise ValueError("size settings must be at least 1")
        return v

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, v: str | None) -> str | None:
        """Basic validation of OpenAI API key format."""
        if v is not None and len(v) < 10:
            raise ValueError("Invalid OpenAI API key format")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses LRU cache to ensure we only load and validate settings once.
    This function will raise validation errors at startup if config is invalid.
    """
    return Settings()
