"""
AWS S3 Storage Provider

Concrete IStorageProvider for Amazon S3 using boto3. Uploads above the
multipart threshold are split into parts by the managed transfer.
"""

import asyncio
import io
from typing import Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from docvault.domain.errors import StorageErrorKind
from docvault.domain.file_storage.entities import DownloadedObject, StorageType
from docvault.infrastructure.storage.error_classification import classify_http_status
from docvault.infrastructure.storage.local_provider import guess_mime_type
from docvault.infrastructure.storage.object_store import ObjectStoreProvider

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404", "NoSuchBucket"}
PERMISSION_CODES = {"AccessDenied", "403", "AllAccessDisabled"}
BUSY_CODES = {"SlowDown", "Throttling", "ThrottlingException", "RequestLimitExceeded",
              "ServiceUnavailable", "503", "OperationAborted"}
IO_CODES = {"InternalError", "500", "RequestTimeout", "RequestTimeTooSkewed"}
CAPACITY_CODES = {"EntityTooLarge", "QuotaExceeded"}
CREDENTIAL_CODES = {"InvalidAccessKeyId", "SignatureDoesNotMatch", "ExpiredToken",
                    "InvalidToken", "TokenRefreshRequired"}
PRECONDITION_CODES = {"PreconditionFailed", "412", "ConditionalRequestConflict"}


class S3StorageProvider(ObjectStoreProvider):
    """
    Amazon S3 implementation of IStorageProvider.

    Attributes:
        bucket_name: Name of the S3 bucket
        client: boto3 S3 client
        transfer_config: Managed transfer settings (multipart threshold)
    """

    storage_type = StorageType.AWS.value
    name = "aws"

    def __init__(
        self,
        bucket_name: str,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        multipart_threshold: int = 10 * 1024 * 1024,
        client=None,
    ):
        """
        Initialize the S3 storage provider.

        Args:
            bucket_name: Name of the S3 bucket
            region: AWS region of the bucket
            access_key_id: Optional explicit credentials; default chain otherwise
            secret_access_key: Secret for access_key_id
            multipart_threshold: Size above which uploads use multipart
            client: Pre-built boto3 client (tests)
        """
        super().__init__(bucket_name, multipart_threshold)
        if client is None:
            session_kwargs = {"region_name": region}
            if access_key_id and secret_access_key:
                session_kwargs.update(
                    aws_access_key_id=access_key_id,
                    aws_secret_access_key=secret_access_key,
                )
            client = boto3.session.Session(**session_kwargs).client("s3")
        self.client = client
        self.transfer_config = TransferConfig(
            multipart_threshold=multipart_threshold,
            multipart_chunksize=max(multipart_threshold, 5 * 1024 * 1024),
        )

    def classify_error(self, error: BaseException) -> StorageErrorKind:
        if isinstance(error, ClientError):
            code = _error_code(error)
            if code in NOT_FOUND_CODES:
                return StorageErrorKind.NOT_FOUND
            if code in CREDENTIAL_CODES:
                return StorageErrorKind.UNKNOWN
            if code in PERMISSION_CODES:
                return StorageErrorKind.PERMISSION_DENIED
            if code in BUSY_CODES:
                return StorageErrorKind.RESOURCE_BUSY
            if code in IO_CODES:
                return StorageErrorKind.IO_ERROR
            if code in CAPACITY_CODES:
                return StorageErrorKind.CAPACITY_EXHAUSTED
            status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            return classify_http_status(status)
        if isinstance(error, NoCredentialsError):
            return StorageErrorKind.UNKNOWN
        if isinstance(error, (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError)):
            return StorageErrorKind.IO_ERROR
        return self._classify_transport_error(error)

    async def upload(self, content: bytes, logical_name: str,
                     correlation_id: Optional[str] = None) -> str:
        await asyncio.to_thread(self._put, logical_name, content)
        return self._qualify(logical_name)

    def _put(self, key: str, content: bytes) -> None:
        """
        Write a new object, refusing to replace an existing key.

        Single-part writes are conditional on the key being absent. The
        managed multipart transfer has no such condition, so the key is
        checked first.
        """
        content_type = guess_mime_type(key)
        if not self._use_multipart(len(content)):
            try:
                self.client.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=content,
                    ContentType=content_type,
                    IfNoneMatch="*",
                )
            except ClientError as e:
                if _error_code(e) in PRECONDITION_CODES:
                    raise self._refuse_overwrite(key) from e
                raise
            return

        if self._head(key):
            raise self._refuse_overwrite(key)
        self.client.upload_fileobj(
            io.BytesIO(content),
            self.bucket_name,
            key,
            ExtraArgs={"ContentType": content_type},
            Config=self.transfer_config,
        )

    def _head(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if self.classify_error(e) is StorageErrorKind.NOT_FOUND:
                return False
            raise

    async def download(self, physical_path: str,
                       correlation_id: Optional[str] = None) -> DownloadedObject:
        key = self._key(physical_path)
        content = await asyncio.to_thread(self._get, key)
        return DownloadedObject(content=content, mime_type=guess_mime_type(key))

    def _get(self, key: str) -> bytes:
        buffer = io.BytesIO()
        self.client.download_fileobj(self.bucket_name, key, buffer, Config=self.transfer_config)
        return buffer.getvalue()

    async def delete(self, physical_path: str,
                     correlation_id: Optional[str] = None) -> None:
        await asyncio.to_thread(
            self.client.delete_object, Bucket=self.bucket_name, Key=self._key(physical_path)
        )

    async def check_exists(self, physical_path: str) -> bool:
        return await asyncio.to_thread(self._head, self._key(physical_path))

    async def check_health(self) -> None:
        await asyncio.to_thread(self.client.head_bucket, Bucket=self.bucket_name)


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))
