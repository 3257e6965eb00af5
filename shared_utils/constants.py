"""
Constants management.
Centralized configuration for all magic values, thresholds, and defaults.
"""

from enum import Enum
from typing import Final


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StoreBackend(str, Enum):
    """Supported persistence backends for sessions and flags."""
    MEMORY = "memory"
    DYNAMODB = "dynamodb"


# Default values
class Defaults:
    """Defaults for analysis, ingestion and delivery."""
    ALLOWED_LANGUAGE: Final[str] = "en"
    LOG_LEVEL: Final[str] = "INFO"
    AWS_REGION: Final[str] = "eu-west-2"

    # Analyzer windows
    CONTEXT_TOKENS_BEFORE: Final[int] = 3
    CONTEXT_TOKENS_AFTER: Final[int] = 3
    LANGUAGE_CONTEXT_CHARS: Final[int] = 100
    SEGMENT_CONTEXT_CHARS: Final[int] = 150

    # Participation dynamic thresholds
    DOMINANCE_FAIR_SHARE_MULTIPLIER: Final[float] = 1.5
    DOMINANCE_CAP: Final[float] = 0.6
    SILENCE_FAIR_SHARE_MULTIPLIER: Final[float] = 0.3
    SILENCE_FLOOR: Final[float] = 0.05
    MIN_SPEAKERS_FOR_DOMINANCE: Final[int] = 2
    MIN_SPEAKERS_FOR_SILENCE: Final[int] = 3

    # Fixed quality bar for the topic adherence alert
    TOPIC_ADHERENCE_QUALITY_BAR: Final[float] = 0.7

    # External provider + delivery
    TRANSCRIPT_FETCH_TIMEOUT_SECONDS: Final[float] = 10.0

    # Finalization lease: a reconciling session is resumable once its claim is this old
    FINALIZATION_LEASE_SECONDS: Final[float] = 120.0
    FINALIZATION_WAIT_SECONDS: Final[float] = 30.0
    FINALIZATION_POLL_INTERVAL_SECONDS: Final[float] = 0.1
    BROADCAST_QUEUE_SIZE: Final[int] = 100
    CACHE_TTL_SECONDS: Final[float] = 60.0
    CACHE_MAX_ENTRIES: Final[int] = 2000

    # Client append retry policy
    APPEND_MAX_ATTEMPTS: Final[int] = 4
    APPEND_BASE_DELAY_SECONDS: Final[float] = 0.1
    APPEND_MAX_DELAY_SECONDS: Final[float] = 2.0

    UNKNOWN_DISPLAY_NAME: Final[str] = "Unknown Group"
    DEFAULT_SPEAKER: Final[str] = "SPEAKER 1"


class FlagWords:
    """Sentinel values stored in ``flagged_word`` for aggregate flags."""
    PARTICIPATION_DOMINANCE: Final[str] = "participation_dominance"
    PARTICIPATION_SILENCE: Final[str] = "participation_silence"
    PARTICIPATION_IMBALANCE: Final[str] = "participation_imbalance"
    OFF_TOPIC: Final[str] = "off_topic"
    LOW_TOPIC_ADHERENCE: Final[str] = "low_topic_adherence"


# Logging scopes
class LogScope:
    """Standardized logging scope names."""
    CONFIG = "config_loader"
    API = "api"
    VALIDATION = "validation"
    ERROR_HANDLER = "error_handler"
    ANALYZER = "analyzer"
    PARSER = "token_segmenter"
    SESSION = "session_service"
    INGESTION = "ingestion"
    FINALIZATION = "finalization"
    BROADCAST = "broadcast"
    CLIENT = "append_client"
    WORKER = "worker"
    ADAPTER = "adapter"


# API endpoints and paths
class APIEndpoints:
    """API route definitions."""
    HEALTH = "/health"
    SESSIONS = "/api/v1/sessions"
    FLAGGED_CONTENT = "/api/v1/flagged-content"
    SESSION = "/api/v1/sessions/{session_id}"
    SEGMENTS = "/api/v1/sessions/{session_id}/segments"
    COMPLETE = "/api/v1/sessions/{session_id}/complete"
    TOPIC_CONFIG = "/api/v1/sessions/{session_id}/topic-config"
    PARTICIPATION_CONFIG = "/api/v1/sessions/{session_id}/participation-config"
    MONITOR_WS = "/ws/monitor"


# Error codes
class ErrorCode(str, Enum):
    """Standardized error codes for consistency."""
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_INPUT = "INVALID_INPUT"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    CURSOR_CONFLICT = "CURSOR_CONFLICT"
    SESSION_CLOSED = "SESSION_CLOSED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    ACCESS_DENIED = "ACCESS_DENIED"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    ANALYZER_INPUT_INVALID = "ANALYZER_INPUT_INVALID"
