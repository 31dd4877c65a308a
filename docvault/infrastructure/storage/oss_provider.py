"""
Alibaba Cloud OSS Storage Provider

Concrete IStorageProvider for Alibaba Object Storage Service using oss2.
The provider never uses the long-lived access key for object traffic:
it assumes a RAM role through STS and signs requests with the resulting
short-lived credentials, which a background timer refreshes on a fixed
interval independent of requests. Writes carry x-oss-forbid-overwrite so an
existing object is never replaced.
"""

import asyncio
import json
import logging
import threading
from typing import Any, Callable, Dict, Optional

import oss2
from aliyunsdkcore.acs_exception.exceptions import ClientException, ServerException
from aliyunsdkcore.client import AcsClient
from aliyunsdksts.request.v20150401.AssumeRoleRequest import AssumeRoleRequest

from docvault.domain.errors import StorageErrorKind
from docvault.domain.file_storage.entities import DownloadedObject, StorageType
from docvault.infrastructure.storage.error_classification import classify_http_status
from docvault.infrastructure.storage.local_provider import guess_mime_type
from docvault.infrastructure.storage.object_store import ObjectStoreProvider

logger = logging.getLogger(__name__)

PART_SIZE = 8 * 1024 * 1024
CREDENTIAL_CODES = {"InvalidAccessKeyId", "SecurityTokenExpired", "InvalidSecurityToken",
                    "SignatureDoesNotMatch"}
FORBID_OVERWRITE_HEADER = "x-oss-forbid-overwrite"
EXISTS_CODE = "FileAlreadyExists"


class OSSStorageProvider(ObjectStoreProvider):
    """
    Alibaba OSS implementation of IStorageProvider.

    Thread Safety:
        The bucket handle is replaced atomically on each credential refresh;
        in-flight requests keep the handle they started with.

    Attributes:
        bucket_name: Name of the OSS bucket
        endpoint: OSS endpoint of the bucket region
        refresh_seconds: Interval between STS credential refreshes
    """

    storage_type = StorageType.ALIBABA.value
    name = "alibaba"

    def __init__(
        self,
        bucket_name: str,
        region: str,
        access_key_id: str,
        access_key_secret: str,
        role_arn: str,
        session_name: str = "oss-session",
        duration_seconds: int = 3600,
        refresh_seconds: int = 900,
        multipart_threshold: int = 10 * 1024 * 1024,
        sts_client: Optional[AcsClient] = None,
        bucket_factory: Callable[..., oss2.Bucket] = oss2.Bucket,
        auto_start: bool = True,
    ):
        """
        Initialize the OSS storage provider.

        Args:
            bucket_name: Name of the OSS bucket
            region: Region id (e.g. 'ap-southeast-5')
            access_key_id: RAM user key allowed to assume role_arn
            access_key_secret: Secret for access_key_id
            role_arn: ARN of the role granting bucket access
            session_name: STS role session name
            duration_seconds: Lifetime requested for each STS credential
            refresh_seconds: Interval between refreshes
            multipart_threshold: Size above which uploads use multipart
            sts_client: Pre-built STS client (tests)
            bucket_factory: Callable building an oss2.Bucket (tests)
            auto_start: Fetch credentials, validate the bucket and start the timer
        """
        super().__init__(bucket_name, multipart_threshold)
        self.region = region
        self.endpoint = f"https://oss-{region}.aliyuncs.com"
        self.role_arn = role_arn
        self.session_name = session_name
        self.duration_seconds = duration_seconds
        self.refresh_seconds = refresh_seconds
        self._sts_client = sts_client or AcsClient(access_key_id, access_key_secret, region)
        self._bucket_factory = bucket_factory
        self._bucket: Optional[oss2.Bucket] = None
        self._stop = threading.Event()
        self._refresher: Optional[threading.Thread] = None

        if auto_start:
            self.start()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Fetch the first credentials, validate the bucket and start refreshing."""
        self.refresh_credentials()
        self._bucket.get_bucket_info()
        logger.info(f"OSS bucket '{self.bucket_name}' validated at {self.endpoint}")

        self._refresher = threading.Thread(
            target=self._refresh_loop, name="oss-sts-refresh", daemon=True
        )
        self._refresher.start()

    def _assume_role(self) -> Dict[str, Any]:
        request = AssumeRoleRequest()
        request.set_accept_format("json")
        request.set_RoleArn(self.role_arn)
        request.set_RoleSessionName(self.session_name)
        request.set_DurationSeconds(self.duration_seconds)
        body = self._sts_client.do_action_with_exception(request)
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        return json.loads(body)["Credentials"]

    def refresh_credentials(self) -> None:
        """Assume the role again and swap in a bucket handle signed with the new token."""
        credentials = self._assume_role()
        auth = oss2.StsAuth(
            credentials["AccessKeyId"],
            credentials["AccessKeySecret"],
            credentials["SecurityToken"],
        )
        self._bucket = self._bucket_factory(auth, self.endpoint, self.bucket_name)
        logger.info(f"Refreshed OSS STS credentials (expire {credentials.get('Expiration')})")

    def _refresh_loop(self) -> None:
        while not self._stop.wait(self.refresh_seconds):
            try:
                self.refresh_credentials()
            except Exception as e:
                # Keep the previous credentials until the next tick
                logger.error(f"Failed to refresh OSS STS credentials: {e}", exc_info=True)

    def close(self) -> None:
        self._stop.set()
        if self._refresher is not None:
            self._refresher.join(timeout=5)
            self._refresher = None

    @property
    def bucket(self) -> oss2.Bucket:
        if self._bucket is None:
            raise RuntimeError("OSS provider has not been started")
        return self._bucket

    # ------------------------------------------------------------------
    # IStorageProvider
    # ------------------------------------------------------------------

    def classify_error(self, error: BaseException) -> StorageErrorKind:
        if isinstance(error, oss2.exceptions.RequestError):
            return StorageErrorKind.IO_ERROR
        if isinstance(error, oss2.exceptions.OssError):
            if error.code in CREDENTIAL_CODES:
                return StorageErrorKind.UNKNOWN
            return classify_http_status(error.status)
        if isinstance(error, (ClientException, ServerException)):
            return StorageErrorKind.UNKNOWN
        return self._classify_transport_error(error)

    async def upload(self, content: bytes, logical_name: str,
                     correlation_id: Optional[str] = None) -> str:
        await asyncio.to_thread(self._upload, logical_name, content)
        return self._qualify(logical_name)

    def _upload(self, key: str, content: bytes) -> None:
        try:
            self._write(key, content)
        except oss2.exceptions.OssError as e:
            if e.code == EXISTS_CODE:
                raise self._refuse_overwrite(key) from e
            raise

    def _write(self, key: str, content: bytes) -> None:
        bucket = self.bucket
        headers = {"Content-Type": guess_mime_type(key), FORBID_OVERWRITE_HEADER: "true"}
        if not self._use_multipart(len(content)):
            bucket.put_object(key, content, headers=headers)
            return

        upload_id = bucket.init_multipart_upload(key, headers=headers).upload_id
        try:
            parts = []
            for number, offset in enumerate(range(0, len(content), PART_SIZE), start=1):
                result = bucket.upload_part(key, upload_id, number, content[offset:offset + PART_SIZE])
                parts.append(oss2.models.PartInfo(number, result.etag))
            bucket.complete_multipart_upload(key, upload_id, parts, headers=headers)
        except Exception:
            try:
                bucket.abort_multipart_upload(key, upload_id)
            except oss2.exceptions.OssError as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    async def download(self, physical_path: str,
                       correlation_id: Optional[str] = None) -> DownloadedObject:
        key = self._key(physical_path)
        content = await asyncio.to_thread(self._get, key)
        return DownloadedObject(content=content, mime_type=guess_mime_type(key))

    def _get(self, key: str) -> bytes:
        return self.bucket.get_object(key).read()

    async def delete(self, physical_path: str,
                     correlation_id: Optional[str] = None) -> None:
        key = self._key(physical_path)
        await asyncio.to_thread(self.bucket.delete_object, key)

    async def check_exists(self, physical_path: str) -> bool:
        key = self._key(physical_path)
        return await asyncio.to_thread(self.bucket.object_exists, key)

    async def check_health(self) -> None:
        await asyncio.to_thread(self.bucket.get_bucket_info)
