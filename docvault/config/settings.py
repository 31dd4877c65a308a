"""
Storage Settings

Reads every recognized option from the environment into immutable
settings objects and validates them eagerly. Any invalid or incomplete
value raises ConfigurationError so the process never starts with a
configuration that would only fail on the first request.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from docvault.domain.errors import ConfigurationError
from docvault.domain.file_storage.entities import StorageType

ENCRYPTION_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
CATEGORY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

DEFAULT_ALLOWED_MIME_TYPES = "image/jpeg,image/png,application/pdf"
DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024
DEFAULT_CATEGORY_SLOTS = {
    "documents": "document",
    "ktp": "identity_card",
    "simA": "driving_license_a",
    "simB": "driving_license_b",
    "foto": "photo",
    "suratSehatButaWarna": "color_blindness_certificate",
    "suratBebasNarkoba": "drug_free_certificate",
    "signature": "signature",
    "qrCode": "qr_code",
}


@dataclass(frozen=True)
class RetrySettings:
    """Bounded retry with exponential backoff, in seconds."""
    max_attempts: int = 3
    min_backoff: float = 1.0
    max_backoff: float = 5.0


@dataclass(frozen=True)
class CircuitSettings:
    """Consecutive failures that open a circuit and the open period, in seconds."""
    failure_threshold: int = 5
    reset_timeout: float = 30.0


@dataclass(frozen=True)
class LocalSettings:
    uploads_path: str = "/var/lib/docvault/uploads"


@dataclass(frozen=True)
class NasSettings:
    host: Optional[str] = None
    port: int = 22
    username: Optional[str] = None
    password: Optional[str] = None
    base_path: str = "/nas/uploads"

    def missing(self) -> List[str]:
        return _missing({"NAS_HOST": self.host, "NAS_USERNAME": self.username,
                         "NAS_PASSWORD": self.password})

    def given(self) -> bool:
        return any([self.host, self.username, self.password])


@dataclass(frozen=True)
class GcpSettings:
    project_id: Optional[str] = None
    key_file: Optional[str] = None
    bucket_name: Optional[str] = None

    def missing(self) -> List[str]:
        return _missing({"GCP_PROJECT_ID": self.project_id, "GCP_BUCKET_NAME": self.bucket_name})

    def given(self) -> bool:
        return any([self.project_id, self.bucket_name, self.key_file])


@dataclass(frozen=True)
class AwsSettings:
    region: Optional[str] = None
    bucket_name: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    def missing(self) -> List[str]:
        problems = _missing({"AWS_REGION": self.region, "AWS_BUCKET_NAME": self.bucket_name})
        if bool(self.access_key_id) != bool(self.secret_access_key):
            problems.append("AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set together")
        return problems

    def given(self) -> bool:
        return bool(self.bucket_name)


@dataclass(frozen=True)
class AlibabaSettings:
    region: Optional[str] = None
    bucket_name: Optional[str] = None
    access_key_id: Optional[str] = None
    access_key_secret: Optional[str] = None
    sts_role_arn: Optional[str] = None
    sts_session_name: str = "oss-session"
    sts_duration_seconds: int = 3600
    sts_refresh_seconds: int = 900

    @property
    def endpoint(self) -> str:
        return f"https://oss-{self.region}.aliyuncs.com"

    def missing(self) -> List[str]:
        problems = _missing({
            "ALIBABA_REGION": self.region,
            "ALIBABA_BUCKET_NAME": self.bucket_name,
            "ALIBABA_ACCESS_KEY_ID": self.access_key_id,
            "ALIBABA_ACCESS_KEY_SECRET": self.access_key_secret,
            "ALIBABA_STS_ROLE_ARN": self.sts_role_arn,
        })
        if self.sts_refresh_seconds >= self.sts_duration_seconds:
            problems.append("ALIBABA_STS_REFRESH_SECONDS must be shorter than the credential lifetime")
        return problems

    def given(self) -> bool:
        return any([self.region, self.bucket_name, self.access_key_id,
                    self.access_key_secret, self.sts_role_arn])


@dataclass(frozen=True)
class StorageSettings:
    """
    Validated configuration of the storage subsystem.

    Built once at process start with from_env(); services receive it by
    injection and never read the environment themselves.
    """
    storage_type: str = StorageType.LOCAL.value
    encryption_key: str = ""
    allowed_mime_types: Tuple[str, ...] = tuple(DEFAULT_ALLOWED_MIME_TYPES.split(","))
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    multipart_threshold_bytes: int = 10 * 1024 * 1024
    retry: RetrySettings = field(default_factory=RetrySettings)
    circuit: CircuitSettings = field(default_factory=CircuitSettings)
    local: LocalSettings = field(default_factory=LocalSettings)
    nas: NasSettings = field(default_factory=NasSettings)
    gcp: GcpSettings = field(default_factory=GcpSettings)
    aws: AwsSettings = field(default_factory=AwsSettings)
    alibaba: AlibabaSettings = field(default_factory=AlibabaSettings)
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 1000
    database_url: str = "sqlite:///./docvault.db"
    owner_table: str = "participants"
    owner_key_column: str = "id"
    category_slots: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_CATEGORY_SLOTS))
    notification_max_per_type: int = 100
    notify_admin_email: Optional[str] = None
    app_name: str = "DocVault"
    sweep_batch_size: int = 100
    crypto_workers: int = 2
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'StorageSettings':
        """
        Build and validate settings from environment variables.

        Args:
            environ: Mapping to read from, defaults to os.environ

        Returns:
            Validated StorageSettings

        Raises:
            ConfigurationError: If any value is invalid or the active backend
                is missing required parameters
        """
        env = os.environ if environ is None else environ
        reader = _EnvReader(env)

        settings = cls(
            storage_type=reader.text("STORAGE_TYPE", StorageType.LOCAL.value).lower(),
            encryption_key=reader.text("ENCRYPTION_KEY", ""),
            allowed_mime_types=reader.csv("ALLOWED_MIME_TYPES", DEFAULT_ALLOWED_MIME_TYPES),
            max_file_size=reader.number("MAX_FILE_SIZE", DEFAULT_MAX_FILE_SIZE),
            multipart_threshold_bytes=reader.number("MULTIPART_THRESHOLD_MB", 10) * 1024 * 1024,
            retry=RetrySettings(
                max_attempts=reader.number("RETRY_COUNT", 3),
                min_backoff=reader.number("RETRY_MIN_TIMEOUT", 1000) / 1000.0,
                max_backoff=reader.number("RETRY_MAX_TIMEOUT", 5000) / 1000.0,
            ),
            circuit=CircuitSettings(
                failure_threshold=reader.number("CIRCUIT_FAILURE_THRESHOLD", 5),
                reset_timeout=reader.number("CIRCUIT_RESET_TIMEOUT", 30000) / 1000.0,
            ),
            local=LocalSettings(uploads_path=reader.text("UPLOADS_PATH", LocalSettings.uploads_path)),
            nas=NasSettings(
                host=reader.optional("NAS_HOST"),
                port=reader.number("NAS_PORT", 22),
                username=reader.optional("NAS_USERNAME"),
                password=reader.optional("NAS_PASSWORD"),
                base_path=reader.text("NAS_BASE_PATH", "/nas/uploads"),
            ),
            gcp=GcpSettings(
                project_id=reader.optional("GCP_PROJECT_ID"),
                key_file=reader.optional("GCP_KEY_FILE"),
                bucket_name=reader.optional("GCP_BUCKET_NAME"),
            ),
            aws=AwsSettings(
                region=reader.optional("AWS_REGION"),
                bucket_name=reader.optional("AWS_BUCKET_NAME"),
                access_key_id=reader.optional("AWS_ACCESS_KEY_ID"),
                secret_access_key=reader.optional("AWS_SECRET_ACCESS_KEY"),
            ),
            alibaba=AlibabaSettings(
                region=reader.optional("ALIBABA_REGION"),
                bucket_name=reader.optional("ALIBABA_BUCKET_NAME"),
                access_key_id=reader.optional("ALIBABA_ACCESS_KEY_ID"),
                access_key_secret=reader.optional("ALIBABA_ACCESS_KEY_SECRET"),
                sts_role_arn=reader.optional("ALIBABA_STS_ROLE_ARN"),
                sts_session_name=reader.text("ALIBABA_STS_SESSION_NAME", "oss-session"),
                sts_duration_seconds=reader.number("ALIBABA_STS_DURATION_SECONDS", 3600),
                sts_refresh_seconds=reader.number("ALIBABA_STS_REFRESH_SECONDS", 900),
            ),
            cache_ttl_seconds=reader.number("CACHE_TTL_SECONDS", 300),
            cache_max_entries=reader.number("CACHE_MAX_ENTRIES", 1000),
            database_url=reader.text("DATABASE_URL", "sqlite:///./docvault.db"),
            owner_table=reader.text("OWNER_TABLE", "participants"),
            owner_key_column=reader.text("OWNER_KEY_COLUMN", "id"),
            category_slots=reader.pairs("STORAGE_CATEGORY_SLOTS", DEFAULT_CATEGORY_SLOTS),
            notification_max_per_type=reader.number("NOTIFICATION_MAX_PER_TYPE", 100),
            notify_admin_email=reader.optional("NOTIFY_ADMIN_EMAIL"),
            app_name=reader.text("APP_NAME", "DocVault"),
            sweep_batch_size=reader.number("SWEEP_BATCH_SIZE", 100),
            crypto_workers=reader.number("CRYPTO_WORKERS", 2),
            log_level=reader.text("LOG_LEVEL", "INFO").upper(),
        )

        problems = reader.problems + settings.validate()
        if problems:
            raise ConfigurationError(
                "Invalid storage configuration: " + "; ".join(problems), problems
            )
        return settings

    def validate(self) -> List[str]:
        """
        Check cross-field rules.

        Returns:
            List of problem descriptions, empty when the settings are valid
        """
        problems: List[str] = []

        if not StorageType.is_known(self.storage_type):
            problems.append(
                f"STORAGE_TYPE must be one of {', '.join(StorageType.values())}, got '{self.storage_type}'"
            )
        if not ENCRYPTION_KEY_PATTERN.match(self.encryption_key or ""):
            problems.append("ENCRYPTION_KEY must be 64 hexadecimal characters (256-bit key)")
        if not self.allowed_mime_types:
            problems.append("ALLOWED_MIME_TYPES must list at least one MIME type")
        if self.max_file_size <= 0:
            problems.append("MAX_FILE_SIZE must be positive")
        if self.multipart_threshold_bytes <= 0:
            problems.append("MULTIPART_THRESHOLD_MB must be positive")
        if self.retry.max_attempts < 1:
            problems.append("RETRY_COUNT must be at least 1")
        if self.retry.min_backoff < 0 or self.retry.max_backoff < self.retry.min_backoff:
            problems.append("RETRY_MIN_TIMEOUT must be >= 0 and <= RETRY_MAX_TIMEOUT")
        if self.circuit.failure_threshold < 1 or self.circuit.reset_timeout <= 0:
            problems.append("CIRCUIT_FAILURE_THRESHOLD must be at least 1 and CIRCUIT_RESET_TIMEOUT positive")
        if not os.path.isabs(self.local.uploads_path):
            problems.append("UPLOADS_PATH must be an absolute path")
        if self.cache_ttl_seconds <= 0 or self.cache_max_entries <= 0:
            problems.append("CACHE_TTL_SECONDS and CACHE_MAX_ENTRIES must be positive")
        if self.notification_max_per_type <= 0:
            problems.append("NOTIFICATION_MAX_PER_TYPE must be positive")
        if self.sweep_batch_size <= 0:
            problems.append("SWEEP_BATCH_SIZE must be positive")
        if self.crypto_workers <= 0:
            problems.append("CRYPTO_WORKERS must be positive")
        if not self.category_slots:
            problems.append("STORAGE_CATEGORY_SLOTS must define at least one category")
        for category, slot in self.category_slots.items():
            if not CATEGORY_PATTERN.match(category) or not slot:
                problems.append(f"Invalid category mapping '{category}:{slot}'")

        for storage_type, backend in self._backends().items():
            missing = backend.missing()
            if storage_type == self.storage_type or backend.given():
                problems.extend(missing)

        return problems

    def _backends(self) -> Dict[str, object]:
        return {
            StorageType.NAS.value: self.nas,
            StorageType.GCP.value: self.gcp,
            StorageType.AWS.value: self.aws,
            StorageType.ALIBABA.value: self.alibaba,
        }

    def configured_backends(self) -> List[str]:
        """
        Backends that can be constructed with this configuration.

        Local is always available; the active backend is always included;
        other backends are included when their parameters are complete.
        """
        backends = [StorageType.LOCAL.value]
        for storage_type, backend in self._backends().items():
            if storage_type == self.storage_type or (backend.given() and not backend.missing()):
                backends.append(storage_type)
        return backends


def _missing(values: Dict[str, Optional[str]]) -> List[str]:
    return [f"{name} is required" for name, value in values.items() if not value]


class _EnvReader:
    """Typed environment accessors that collect problems instead of raising."""

    def __init__(self, environ: Mapping[str, str]):
        self.environ = environ
        self.problems: List[str] = []

    def optional(self, name: str) -> Optional[str]:
        value = self.environ.get(name)
        if value is None or not value.strip():
            return None
        return value.strip()

    def text(self, name: str, default: str) -> str:
        value = self.optional(name)
        return default if value is None else value

    def number(self, name: str, default: int) -> int:
        value = self.optional(name)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            self.problems.append(f"{name} must be an integer, got '{value}'")
            return default

    def csv(self, name: str, default: str) -> Tuple[str, ...]:
        raw = self.text(name, default)
        return tuple(item.strip().lower() for item in raw.split(",") if item.strip())

    def pairs(self, name: str, default: Mapping[str, str]) -> Dict[str, str]:
        raw = self.optional(name)
        if raw is None:
            return dict(default)
        result: Dict[str, str] = {}
        for item in raw.split(","):
            item = item.strip()
            if not item:
                continue
            key, sep, value = item.partition(":")
            if not sep or not key.strip() or not value.strip():
                self.problems.append(f"{name} entries must look like 'category:slot', got '{item}'")
                continue
            result[key.strip()] = value.strip()
        return result
