"""
Service wiring.

Builds every storage component once from validated settings and registers
it in a DependencyContainer. Web processes and Celery workers both call
create_container() at startup and resolve services from the result.
"""

import logging
from typing import Optional

import redis

from docvault.application.dependency_container import DependencyContainer
from docvault.application.event_publisher import EventPublisher
from docvault.application.file_upload_service import FileUploadService
from docvault.application.notification_batcher import NotificationBatcher
from docvault.application.orphan_sweeper import OrphanSweeper
from docvault.application.retry_policy import RetryPolicy
from docvault.config.logging_config import setup_logging
from docvault.config.redis_config import get_redis_client
from docvault.config.settings import StorageSettings
from docvault.domain.file_storage.repositories import (
    FileCatalog,
    MetadataCache,
    NotificationQueue,
    NotificationSender,
    OwnerDirectory,
)
from docvault.infrastructure.encryption_codec import EncryptionCodec
from docvault.infrastructure.metrics_recorder import MetricsRecorder
from docvault.infrastructure.mime_sniffer import sniff_mime_type
from docvault.infrastructure.notification_senders import LoggingNotificationSender
from docvault.infrastructure.redis_metadata_cache import RedisMetadataCache
from docvault.infrastructure.redis_notification_queue import RedisNotificationQueue
from docvault.infrastructure.redis_repository import RedisRepository
from docvault.infrastructure.sql_file_catalog import SqlFileCatalog, create_catalog_engine
from docvault.infrastructure.sql_owner_directory import SqlOwnerDirectory
from docvault.infrastructure.storage.resilient_provider import ResilientStorageProvider
from docvault.infrastructure.storage.storage_factory import ProviderRegistry, StorageFactory

logger = logging.getLogger(__name__)

REDIS_KEY_PREFIX = "docvault"


def create_container(
    settings: Optional[StorageSettings] = None,
    *,
    owner_directory: Optional[OwnerDirectory] = None,
    notification_sender: Optional[NotificationSender] = None,
    redis_client: Optional[redis.Redis] = None,
    metrics: Optional[MetricsRecorder] = None,
) -> DependencyContainer:
    """
    Build and register all storage services.

    PATTERN:
    --------
    1. Infrastructure adapters (codec, catalog, Redis cache and queue, providers)
    2. Application collaborators (publisher, batcher, sweeper)
    3. The FileUploadService orchestrator

    Args:
        settings: Validated settings; read from the environment when None
        owner_directory: Owner lookup; defaults to a SQL lookup on the catalog database
        notification_sender: Digest channel; defaults to the logging sender
        redis_client: Redis client; defaults to the shared connection pool
        metrics: Metrics recorder; defaults to one on the global registry

    Returns:
        DependencyContainer with every component registered as a singleton

    Raises:
        ConfigurationError: If settings are invalid or the active backend
            cannot be constructed
    """
    if settings is None:
        settings = StorageSettings.from_env()
        setup_logging(settings.log_level)

    container = DependencyContainer()
    container.register_singleton(StorageSettings, settings)

    # Infrastructure
    if metrics is None:
        metrics = MetricsRecorder()
    container.register_singleton(MetricsRecorder, metrics)

    codec = EncryptionCodec(settings.encryption_key, max_workers=settings.crypto_workers)
    container.register_singleton(EncryptionCodec, codec)

    engine = create_catalog_engine(settings.database_url)
    catalog = SqlFileCatalog(engine)
    container.register_singleton(FileCatalog, catalog)

    if owner_directory is None:
        owner_directory = SqlOwnerDirectory(
            engine, table_name=settings.owner_table, key_column=settings.owner_key_column
        )
    container.register_singleton(OwnerDirectory, owner_directory)

    if redis_client is None:
        redis_client = get_redis_client()
    redis_repo = RedisRepository(redis_client, REDIS_KEY_PREFIX)
    container.register_singleton(RedisRepository, redis_repo)

    cache = RedisMetadataCache(
        redis_repo,
        ttl_seconds=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        metrics=metrics,
    )
    container.register_singleton(MetadataCache, cache)

    queue = RedisNotificationQueue(redis_repo, max_per_type=settings.notification_max_per_type)
    container.register_singleton(NotificationQueue, queue)

    if notification_sender is None:
        notification_sender = LoggingNotificationSender(recipient=settings.notify_admin_email)
    container.register_singleton(NotificationSender, notification_sender)

    registry = StorageFactory.create_registry(settings, metrics)
    container.register_singleton(ProviderRegistry, registry)

    fallback = StorageFactory.create_fallback(registry)
    container.register_singleton(ResilientStorageProvider, fallback)

    # Application
    event_publisher = EventPublisher()
    container.setup_event_handlers(event_publisher)
    container.register_singleton(EventPublisher, event_publisher)

    batcher = NotificationBatcher(
        queue,
        notification_sender,
        app_name=settings.app_name,
        retry_policy=RetryPolicy(max_attempts=3, min_backoff=1.0, max_backoff=5.0),
        metrics=metrics,
    )
    container.register_singleton(NotificationBatcher, batcher)

    sweeper = OrphanSweeper(
        catalog,
        cache,
        registry,
        batch_size=settings.sweep_batch_size,
        event_publisher=event_publisher,
        metrics=metrics,
    )
    container.register_singleton(OrphanSweeper, sweeper)

    service = FileUploadService(
        providers=registry,
        primary_storage_type=settings.storage_type,
        catalog=catalog,
        cache=cache,
        owner_directory=owner_directory,
        codec=codec,
        notification_batcher=batcher,
        orphan_sweeper=sweeper,
        event_publisher=event_publisher,
        category_slots=settings.category_slots,
        allowed_mime_types=settings.allowed_mime_types,
        max_file_size=settings.max_file_size,
        fallback_provider=fallback,
        mime_sniffer=sniff_mime_type,
    )
    container.register_singleton(FileUploadService, service)

    logger.info(
        f"Storage services initialized: primary={settings.storage_type}, "
        f"backends={', '.join(registry)}"
    )
    return container
