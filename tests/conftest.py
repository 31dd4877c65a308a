"""
Shared pytest fixtures and configuration for the DocVault test suite.

This module provides:
- Hypothesis configuration for property-based testing
- Shared fixtures for payloads, settings and in-memory collaborators
- Automatic markers based on test location
"""

import pytest
from hypothesis import HealthCheck, Phase, settings

from docvault.application.event_publisher import EventPublisher
from docvault.application.file_upload_service import FileUploadService
from docvault.application.notification_batcher import NotificationBatcher
from docvault.application.orphan_sweeper import OrphanSweeper
from docvault.config.settings import DEFAULT_CATEGORY_SLOTS
from docvault.infrastructure.encryption_codec import EncryptionCodec
from tests.fixtures.fakes import (
    InMemoryFileCatalog,
    InMemoryMetadataCache,
    InMemoryNotificationQueue,
    InMemoryStorageProvider,
    RecordingNotificationSender,
    StaticOwnerDirectory,
    make_retry_policy,
)

# Register Hypothesis profiles
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.target, Phase.shrink],
)
settings.register_profile(
    "ci",
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile("default")

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff" * 2

JPEG_HEADER = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"


# =============================================================================
# Payload Fixtures
# =============================================================================

@pytest.fixture
def encryption_key() -> str:
    """Provide a valid 256-bit hex key."""
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def jpeg_bytes() -> bytes:
    """Provide a 4KB payload starting with a JPEG header."""
    return JPEG_HEADER + bytes(range(256)) * 16 + b"\xff\xd9"


# =============================================================================
# Collaborator Fixtures
# =============================================================================

@pytest.fixture
def catalog():
    return InMemoryFileCatalog()


@pytest.fixture
def cache():
    return InMemoryMetadataCache()


@pytest.fixture
def notification_queue():
    return InMemoryNotificationQueue(max_per_type=100)


@pytest.fixture
def notification_sender():
    return RecordingNotificationSender()


@pytest.fixture
def owner_directory():
    return StaticOwnerDirectory({"P1", "P2"})


@pytest.fixture
def codec(encryption_key):
    codec = EncryptionCodec(encryption_key, max_workers=1)
    yield codec
    codec.close()


@pytest.fixture
def event_publisher():
    return EventPublisher()


@pytest.fixture
def batcher(notification_queue, notification_sender):
    return NotificationBatcher(
        notification_queue,
        notification_sender,
        app_name="DocVault Test",
        retry_policy=make_retry_policy(max_attempts=3),
    )


@pytest.fixture
def local_backend():
    return InMemoryStorageProvider("local")


@pytest.fixture
def primary_backend():
    return InMemoryStorageProvider("aws")


@pytest.fixture
def service_factory(catalog, cache, owner_directory, codec, batcher, event_publisher):
    """
    Build a FileUploadService over in-memory backends.

    Returns a callable taking the backends keyed by storage_type and the
    primary storage_type; the local backend doubles as the fallback.
    """
    def factory(backends, primary, fallback=None, mime_type="image/jpeg", max_attempts=3):
        from docvault.infrastructure.storage.resilient_provider import ResilientStorageProvider

        policy = make_retry_policy(max_attempts=max_attempts)
        providers = {
            storage_type: ResilientStorageProvider(backend, policy)
            for storage_type, backend in backends.items()
        }
        fallback_provider = None
        if fallback is not None:
            fallback_provider = ResilientStorageProvider(fallback, policy.single_attempt())
        sweeper = OrphanSweeper(catalog, cache, providers, batch_size=2,
                                event_publisher=event_publisher)
        return FileUploadService(
            providers=providers,
            primary_storage_type=primary,
            catalog=catalog,
            cache=cache,
            owner_directory=owner_directory,
            codec=codec,
            notification_batcher=batcher,
            orphan_sweeper=sweeper,
            event_publisher=event_publisher,
            category_slots=DEFAULT_CATEGORY_SLOTS,
            allowed_mime_types=["image/jpeg", "image/png", "application/pdf"],
            max_file_size=5 * 1024 * 1024,
            fallback_provider=fallback_provider,
            mime_sniffer=lambda content: mime_type,
            clock=lambda: 1700000000.123,
        )

    return factory


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (require external services)"
    )
    config.addinivalue_line(
        "markers", "contract: Contract tests (verify interface compliance)"
    )
    config.addinivalue_line(
        "markers", "property: Property-based tests using Hypothesis"
    )


def pytest_collection_modifyitems(config, items):
    """
    Automatically mark tests based on their location.

    - tests/unit/* -> @pytest.mark.unit
    - tests/integration/* -> @pytest.mark.integration
    - tests/contracts/* -> @pytest.mark.contract
    - tests/property/* -> @pytest.mark.property
    """
    for item in items:
        test_path = str(item.fspath)

        if "/unit/" in test_path or "\\unit\\" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path or "\\integration\\" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/contracts/" in test_path or "\\contracts\\" in test_path:
            item.add_marker(pytest.mark.contract)
        elif "/property/" in test_path or "\\property\\" in test_path:
            item.add_marker(pytest.mark.property)
