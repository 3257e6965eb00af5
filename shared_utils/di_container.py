"""
Dependency injection container for managing application dependencies.
Centralizes adapter and service creation and lifecycle management.

Adapters are chosen from settings: ``store_backend`` selects in-memory or
DynamoDB persistence; the transcript provider is only wired when a base URL
is configured.
"""

from typing import Optional
import logging

from shared_utils.config_loader import get_settings
from shared_utils.constants import LogScope, StoreBackend
from shared_utils.error_handler import ConfigurationError


logger = logging.getLogger(__name__)


class DIContainer:
    """Singleton dependency injection container."""

    _instance: Optional['DIContainer'] = None

    _session_store: Optional[object] = None
    _flag_store: Optional[object] = None
    _cache: Optional[object] = None
    _identity: Optional[object] = None
    _transcript_provider: Optional[object] = None
    _broadcaster: Optional[object] = None
    _session_service: Optional[object] = None
    _ingestion_service: Optional[object] = None
    _finalization_service: Optional[object] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def reset(self):
        """Reset container (useful for testing)."""
        if self._finalization_service is not None:
            self._finalization_service.shutdown()
        self._session_store = None
        self._flag_store = None
        self._cache = None
        self._identity = None
        self._transcript_provider = None
        self._broadcaster = None
        self._session_service = None
        self._ingestion_service = None
        self._finalization_service = None

    # ------------------------------------------------------------------
    # Adapter accessors
    # ------------------------------------------------------------------

    def get_session_store(self):
        """Get or create the session store (lazy singleton).

        Uses InMemorySessionStoreAdapter when STORE_BACKEND=memory (local dev)
        and DynamoSessionStoreAdapter otherwise.
        """
        if self._session_store is None:
            settings = get_settings()
            if settings.store_backend == StoreBackend.DYNAMODB.value:
                if not settings.dynamodb_sessions_table:
                    raise ConfigurationError(
                        "DYNAMODB_SESSIONS_TABLE is required when STORE_BACKEND=dynamodb"
                    )
                from adapters.dynamo_session_store import DynamoSessionStoreAdapter

                self._session_store = DynamoSessionStoreAdapter(
                    table_name=settings.dynamodb_sessions_table,
                    region=settings.aws_region,
                    endpoint_url=settings.aws_endpoint_url,
                    owner_index=settings.dynamodb_owner_index,
                )
                logger.info("Initialized DynamoSessionStoreAdapter", extra={"scope": LogScope.CONFIG})
            else:
                from adapters.in_memory_session_store import InMemorySessionStoreAdapter

                self._session_store = InMemorySessionStoreAdapter()
                logger.info("Initialized InMemorySessionStoreAdapter (local dev)", extra={"scope": LogScope.CONFIG})
        return self._session_store

    def get_flag_store(self):
        """Get or create the flag store (lazy singleton)."""
        if self._flag_store is None:
            settings = get_settings()
            if settings.store_backend == StoreBackend.DYNAMODB.value:
                if not settings.dynamodb_flags_table:
                    raise ConfigurationError(
                        "DYNAMODB_FLAGS_TABLE is required when STORE_BACKEND=dynamodb"
                    )
                from adapters.dynamo_flag_store import DynamoFlagStoreAdapter

                self._flag_store = DynamoFlagStoreAdapter(
                    table_name=settings.dynamodb_flags_table,
                    region=settings.aws_region,
                    endpoint_url=settings.aws_endpoint_url,
                )
                logger.info("Initialized DynamoFlagStoreAdapter", extra={"scope": LogScope.CONFIG})
            else:
                from adapters.in_memory_flag_store import InMemoryFlagStoreAdapter

                self._flag_store = InMemoryFlagStoreAdapter()
                logger.info("Initialized InMemoryFlagStoreAdapter (local dev)", extra={"scope": LogScope.CONFIG})
        return self._flag_store

    def get_cache(self):
        """Get or create the response cache (lazy singleton)."""
        if self._cache is None:
            from adapters.in_memory_ttl_cache import InMemoryTtlCacheAdapter

            settings = get_settings()
            self._cache = InMemoryTtlCacheAdapter(
                default_ttl_seconds=settings.cache_ttl_seconds,
                max_entries=settings.cache_max_entries,
            )
            logger.info("Initialized InMemoryTtlCacheAdapter")
        return self._cache

    def get_identity(self):
        """Get or create the identity resolver (lazy singleton)."""
        if self._identity is None:
            from adapters.static_identity import StaticTokenIdentityAdapter

            settings = get_settings()
            self._identity = StaticTokenIdentityAdapter(
                tokens=settings.identity_tokens,
                display_names=settings.display_names,
            )
            logger.info(
                "Initialized StaticTokenIdentityAdapter",
                extra={"scope": LogScope.CONFIG, "tokens": len(settings.identity_tokens)},
            )
        return self._identity

    def get_transcript_provider(self):
        """Get or create the final-transcript provider.

        Returns None when TRANSCRIPT_PROVIDER_BASE_URL is empty; finalization
        then always uses the accumulated segments.
        """
        if self._transcript_provider is None:
            settings = get_settings()
            if not settings.transcript_provider_base_url:
                return None
            from adapters.http_transcript_provider import HttpTranscriptProviderAdapter

            self._transcript_provider = HttpTranscriptProviderAdapter(
                base_url=settings.transcript_provider_base_url,
                api_key=settings.transcript_provider_api_key,
                timeout_seconds=settings.transcript_fetch_timeout_seconds,
            )
            logger.info("Initialized HttpTranscriptProviderAdapter")
        return self._transcript_provider

    def get_broadcaster(self):
        """Get or create the AlertBroadcaster (lazy singleton)."""
        if self._broadcaster is None:
            from services.alert_broadcaster import AlertBroadcaster

            settings = get_settings()
            self._broadcaster = AlertBroadcaster(
                identity=self.get_identity(),
                queue_size=settings.broadcast_queue_size,
            )
            logger.info("Initialized AlertBroadcaster")
        return self._broadcaster

    # ------------------------------------------------------------------
    # Service accessors
    # ------------------------------------------------------------------

    def get_session_service(self):
        """Get or create SessionService (lazy singleton)."""
        if self._session_service is None:
            from services.session_service import SessionService

            self._session_service = SessionService(
                session_store=self.get_session_store(),
                flag_store=self.get_flag_store(),
                cache=self.get_cache(),
                default_language=get_settings().allowed_language,
            )
            logger.info("Initialized SessionService")
        return self._session_service

    def get_ingestion_service(self):
        """Get or create IngestionService (lazy singleton)."""
        if self._ingestion_service is None:
            from services.ingestion_service import IngestionService

            settings = get_settings()
            self._ingestion_service = IngestionService(
                session_store=self.get_session_store(),
                flag_store=self.get_flag_store(),
                alert_publisher=self.get_broadcaster(),
                identity=self.get_identity(),
                cache=self.get_cache(),
                allowed_language=settings.allowed_language,
                profanity_extra_words=settings.profanity_extra_words,
            )
            logger.info("Initialized IngestionService")
        return self._ingestion_service

    def get_finalization_service(self):
        """Get or create FinalizationService (lazy singleton)."""
        if self._finalization_service is None:
            from services.finalization_service import FinalizationService

            settings = get_settings()
            self._finalization_service = FinalizationService(
                session_store=self.get_session_store(),
                flag_store=self.get_flag_store(),
                alert_publisher=self.get_broadcaster(),
                identity=self.get_identity(),
                transcript_provider=self.get_transcript_provider(),
                cache=self.get_cache(),
                allowed_language=settings.allowed_language,
                profanity_extra_words=settings.profanity_extra_words,
                fetch_timeout_seconds=settings.transcript_fetch_timeout_seconds,
                lease_seconds=settings.finalization_lease_seconds,
                completion_wait_seconds=settings.finalization_wait_seconds,
            )
            logger.info("Initialized FinalizationService")
        return self._finalization_service


# Global singleton instance
_container = DIContainer()


def get_di_container() -> DIContainer:
    """Get global DI container instance."""
    return _container
