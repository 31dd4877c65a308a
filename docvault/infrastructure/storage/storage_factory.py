"""
Storage Factory

Builds the storage backends named by configuration and wraps each one in
the shared ResilientStorageProvider. The result is a dispatch table from
storage_type to provider, so rows written under any configured backend
can be served regardless of which backend is currently active.
"""

import logging
from datetime import timedelta
from typing import Dict

from docvault.application.retry_policy import RetryPolicy
from docvault.config.settings import StorageSettings
from docvault.domain.errors import ConfigurationError
from docvault.domain.file_storage.entities import StorageType
from docvault.domain.file_storage.storage_provider import IStorageProvider
from docvault.infrastructure.storage.circuit_breakers import make_breakers
from docvault.infrastructure.storage.local_provider import LocalStorageProvider
from docvault.infrastructure.storage.resilient_provider import ResilientStorageProvider

logger = logging.getLogger(__name__)


class ProviderRegistry(dict):
    """Dispatch table from storage_type to wrapped provider."""

    def close(self) -> None:
        for storage_type, provider in self.items():
            try:
                provider.close()
            except Exception as e:
                logger.warning(f"Error closing {storage_type} storage: {e}")


class StorageFactory:
    """
    Factory for storage provider implementations.

    Selection Logic:
    - local is always built; it is also the fallback target
    - the active STORAGE_TYPE backend is always built; failure is fatal
    - any other backend with complete configuration is built; failure is logged
    - every backend except local gets its own circuit breakers
    """

    @staticmethod
    def create_registry(settings: StorageSettings, metrics=None) -> ProviderRegistry:
        """
        Create the storage_type -> provider dispatch table.

        Args:
            settings: Validated storage settings
            metrics: Optional MetricsRecorder passed to each wrapper

        Returns:
            Mapping of storage_type to wrapped provider

        Raises:
            ConfigurationError: If the active backend cannot be constructed
        """
        retry_policy = RetryPolicy.from_settings(settings.retry)
        registry = ProviderRegistry()

        for storage_type in settings.configured_backends():
            try:
                provider = StorageFactory.create_provider(storage_type, settings, retry_policy)
            except Exception as e:
                if storage_type in (settings.storage_type, StorageType.LOCAL.value):
                    raise ConfigurationError(
                        f"Failed to initialize {storage_type} storage: {e}"
                    ) from e
                logger.warning(f"Storage factory: skipping {storage_type} storage: {e}")
                continue

            breakers = None
            if storage_type != StorageType.LOCAL.value:
                breakers = make_breakers(
                    provider.name or storage_type,
                    fail_max=settings.circuit.failure_threshold,
                    reset_timeout=timedelta(seconds=settings.circuit.reset_timeout),
                    metrics=metrics,
                )
            registry[storage_type] = ResilientStorageProvider(provider, retry_policy, metrics, breakers)
            logger.info(f"Storage factory: registered {storage_type} storage")

        return registry

    @staticmethod
    def create_fallback(registry: Dict[str, ResilientStorageProvider]) -> ResilientStorageProvider:
        """
        Wrap the local provider with a single-attempt policy for forensic copies.

        Args:
            registry: Dispatch table returned by create_registry()

        Returns:
            Local provider that never retries
        """
        local = registry[StorageType.LOCAL.value]
        return ResilientStorageProvider(local.inner, local.retry_policy.single_attempt(), local.metrics)

    @staticmethod
    def create_provider(storage_type: str, settings: StorageSettings,
                        retry_policy: RetryPolicy) -> IStorageProvider:
        """Construct one unwrapped backend."""
        builder = _BUILDERS.get(storage_type)
        if builder is None:
            raise ConfigurationError(f"Unknown storage type: {storage_type}")
        return builder(settings, retry_policy)


def _create_local(settings: StorageSettings, retry_policy: RetryPolicy) -> IStorageProvider:
    return LocalStorageProvider(
        settings.local.uploads_path,
        stream_threshold=settings.multipart_threshold_bytes,
    )


def _create_nas(settings: StorageSettings, retry_policy: RetryPolicy) -> IStorageProvider:
    from docvault.infrastructure.storage.nas_provider import NasStorageProvider

    nas = settings.nas
    return NasStorageProvider(
        host=nas.host,
        port=nas.port,
        username=nas.username,
        password=nas.password,
        base_path=nas.base_path,
        retry_policy=retry_policy,
        stream_threshold=settings.multipart_threshold_bytes,
    )


def _create_gcp(settings: StorageSettings, retry_policy: RetryPolicy) -> IStorageProvider:
    from docvault.infrastructure.storage.gcs_provider import GCSStorageProvider

    gcp = settings.gcp
    return GCSStorageProvider(
        bucket_name=gcp.bucket_name,
        project_id=gcp.project_id,
        key_file=gcp.key_file,
        multipart_threshold=settings.multipart_threshold_bytes,
    )


def _create_aws(settings: StorageSettings, retry_policy: RetryPolicy) -> IStorageProvider:
    from docvault.infrastructure.storage.s3_provider import S3StorageProvider

    aws = settings.aws
    return S3StorageProvider(
        bucket_name=aws.bucket_name,
        region=aws.region,
        access_key_id=aws.access_key_id,
        secret_access_key=aws.secret_access_key,
        multipart_threshold=settings.multipart_threshold_bytes,
    )


def _create_alibaba(settings: StorageSettings, retry_policy: RetryPolicy) -> IStorageProvider:
    from docvault.infrastructure.storage.oss_provider import OSSStorageProvider

    alibaba = settings.alibaba
    return OSSStorageProvider(
        bucket_name=alibaba.bucket_name,
        region=alibaba.region,
        access_key_id=alibaba.access_key_id,
        access_key_secret=alibaba.access_key_secret,
        role_arn=alibaba.sts_role_arn,
        session_name=alibaba.sts_session_name,
        duration_seconds=alibaba.sts_duration_seconds,
        refresh_seconds=alibaba.sts_refresh_seconds,
        multipart_threshold=settings.multipart_threshold_bytes,
    )


_BUILDERS = {
    StorageType.LOCAL.value: _create_local,
    StorageType.NAS.value: _create_nas,
    StorageType.GCP.value: _create_gcp,
    StorageType.AWS.value: _create_aws,
    StorageType.ALIBABA.value: _create_alibaba,
}
