from pydantic_settings import BaseSettings
from pydantic import field_validator, ConfigDict
from functools import lru_cache
from typing import Dict, List, Optional
import json
import logging
import boto3

from shared_utils.constants import Defaults, Environment, StoreBackend

logger = logging.getLogger(__name__)


def get_secret_from_aws(secret_name: str, region: str = Defaults.AWS_REGION, key: str = "api_key") -> str:
    """Fetch a secret value from AWS Secrets Manager.

    Args:
        secret_name: Name of the secret in Secrets Manager
        region: AWS region
        key: JSON key inside the secret string

    Returns:
        Secret value or empty string if fetch fails
    """
    try:
        client = boto3.client("secretsmanager", region_name=region)
        response = client.get_secret_value(SecretId=secret_name)
        if "SecretString" in response:
            secret = json.loads(response["SecretString"])
            return secret.get(key, "")
        return ""
    except Exception as e:
        logger.warning(f"Could not fetch secret from Secrets Manager: {e}")
        return ""


class Settings(BaseSettings):
    """Application configuration with environment variable precedence.

    Precedence: 1) Environment Variables > 2) .env file > 3) Class defaults
    """
    # Application metadata
    app_name: str = "Discussion Monitor"
    app_version: str = "1.0.0"
    app_description: str = "Real-time moderation and quality signals for group discussions"

    # API Base URL Configuration
    api_host: str = "localhost"
    api_port: int = 8000
    api_protocol: str = "http"

    # Environment
    environment: str = "development"
    log_level: str = Defaults.LOG_LEVEL

    # Moderation policy
    allowed_language: str = Defaults.ALLOWED_LANGUAGE
    profanity_extra_words: List[str] = []

    # Persistence
    store_backend: str = "memory"  # "memory" or "dynamodb"
    aws_region: str = Defaults.AWS_REGION
    aws_endpoint_url: str = ""  # LocalStack / DynamoDB local
    dynamodb_sessions_table: str = "DiscussionSessions"
    dynamodb_flags_table: str = "FlaggedContent"
    dynamodb_owner_index: str = "OwnerIndex"

    # Upstream speech-to-text provider (final transcript fetch)
    transcript_provider_base_url: str = ""
    transcript_provider_api_key: Optional[str] = None
    transcript_provider_secret_name: Optional[str] = None
    transcript_fetch_timeout_seconds: float = 10.0

    # Finalization claim lease and how long a losing caller waits for the winner
    finalization_lease_seconds: float = Defaults.FINALIZATION_LEASE_SECONDS
    finalization_wait_seconds: float = Defaults.FINALIZATION_WAIT_SECONDS

    # Observer delivery + response cache
    broadcast_queue_size: int = 100
    cache_ttl_seconds: float = 60.0
    cache_max_entries: int = 2000

    # Identity: bearer token -> user id, user id -> display name
    identity_tokens: Dict[str, str] = {}
    display_names: Dict[str, str] = {}

    model_config = ConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is recognized."""
        valid_envs = {e.value for e in Environment}
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of {valid_envs}, got {v}")
        return v.lower()

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate the minimum log level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got {v}")
        return v.upper()

    @field_validator('store_backend')
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Validate persistence backend is supported."""
        valid_backends = {b.value for b in StoreBackend}
        if v.lower() not in valid_backends:
            raise ValueError(f"store_backend must be one of {valid_backends}, got {v}")
        return v.lower()

    @field_validator('allowed_language')
    @classmethod
    def validate_allowed_language(cls, v: str) -> str:
        """Allowed language must be a non-empty code or name."""
        if not v or not v.strip():
            raise ValueError("allowed_language cannot be empty")
        return v.strip()

    @field_validator('transcript_fetch_timeout_seconds')
    @classmethod
    def validate_fetch_timeout(cls, v: float) -> float:
        """The provider fetch must always be bounded."""
        if v <= 0:
            raise ValueError(f"transcript_fetch_timeout_seconds must be > 0, got {v}")
        return v

    @field_validator('finalization_lease_seconds', 'finalization_wait_seconds')
    @classmethod
    def validate_finalization_window(cls, v: float) -> float:
        """Lease and wait windows cannot be negative."""
        if v < 0:
            raise ValueError(f"finalization windows must be >= 0, got {v}")
        return v

    def get_api_base_url(self) -> str:
        """Get full API base URL constructed from host, port and protocol.

        Returns:
            Full API base URL (e.g., "http://localhost:8000")
        """
        port_str = "" if (
            (self.api_protocol == "http" and self.api_port == 80) or
            (self.api_protocol == "https" and self.api_port == 443)
        ) else f":{self.api_port}"

        return f"{self.api_protocol}://{self.api_host}{port_str}"


@lru_cache()
def get_settings() -> Settings:
    """Load and cache application settings.

    If TRANSCRIPT_PROVIDER_SECRET_NAME is set and no API key is configured
    directly, the provider key is fetched from AWS Secrets Manager.

    Returns:
        Validated Settings instance

    Raises:
        ValueError: If settings are invalid
    """
    settings = Settings()

    if settings.transcript_provider_secret_name and not settings.transcript_provider_api_key:
        secret_key = get_secret_from_aws(
            settings.transcript_provider_secret_name, settings.aws_region
        )
        if secret_key:
            settings.transcript_provider_api_key = secret_key
            logger.debug("fetched_provider_key_from_secrets_manager")

    logger.info(
        "configuration_loaded environment=%s store_backend=%s allowed_language=%s",
        settings.environment,
        settings.store_backend,
        settings.allowed_language,
    )

    return settings
