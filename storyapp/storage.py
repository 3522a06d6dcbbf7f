"""
Media ingestion: turns an uploaded binary into a stable URL in object storage.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol
import io
import logging
import mimetypes
import uuid

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from .config import Settings
from .core import UPLOAD_FAILURES
from .errors import ConfigurationError, NoPayload, PayloadTooLarge, UpstreamUnavailable

logger = logging.getLogger(__name__)

OCTET_STREAM = 'application/octet-stream'


class BlobStore(Protocol):
    """The one operation ingestion needs from object storage."""

    async def upload(self, key: str, payload: bytes, content_type: str) -> str:
        ...


@dataclass
class InMemoryBlobStore:
    """Test double for object storage."""

    base_url: str = 'https://media.example.test'
    objects: dict = field(default_factory=dict)

    async def upload(self, key: str, payload: bytes, content_type: str) -> str:
        self.objects[key] = (bytes(payload), content_type)
        return f'{self.base_url}/{key}'


class S3BlobStore:
    """S3-compatible bucket accessed through aioboto3."""

    def __init__(self, bucket: str, region: str = 'us-east-1', endpoint_url: Optional[str] = None,
                 access_key_id: Optional[str] = None, secret_access_key: Optional[str] = None,
                 public_base_url: Optional[str] = None, session=None):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._session = session or aioboto3.Session()

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f'https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}'

    async def upload(self, key: str, payload: bytes, content_type: str) -> str:
        try:
            async with self._session.client('s3', region_name=self.region,
                                            endpoint_url=self.endpoint_url,
                                            aws_access_key_id=self._access_key_id,
                                            aws_secret_access_key=self._secret_access_key,
                                            config=Config(signature_version='s3v4')) as client:
                await client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=payload,
                    ContentType=content_type,
                    CacheControl='max-age=31536000',
                )
        except (ClientError, BotoCoreError) as e:
            raise UpstreamUnavailable(f'Failed to upload media: {type(e).__name__}') from e
        return self.public_url(key)


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.use_in_memory_storage:
        logger.warning({'msg': 'using_in_memory_blob_store'})
        return InMemoryBlobStore()
    if not settings.aws_s3_bucket:
        raise ConfigurationError('AWS_S3_BUCKET is not set and USE_IN_MEMORY_STORAGE is off')
    return S3BlobStore(
        bucket=settings.aws_s3_bucket,
        region=settings.aws_s3_region,
        endpoint_url=settings.aws_s3_endpoint_url,
        access_key_id=settings.aws_access_key_id,
        secret_access_key=settings.aws_secret_access_key,
        public_base_url=settings.media_public_base_url,
    )


@dataclass(frozen=True)
class MediaReference:
    url: str
    key: str
    content_type: str
    resource_type: str
    size: int


def sniff_content_type(payload: bytes) -> str:
    try:
        with Image.open(io.BytesIO(payload)) as img:
            return Image.MIME.get(img.format, OCTET_STREAM)
    except (UnidentifiedImageError, OSError):
        return OCTET_STREAM


def resource_type_for(content_type: str) -> str:
    major = content_type.split('/', 1)[0]
    if major == 'image':
        return 'image'
    if major in ('video', 'audio'):
        return 'video'
    return 'raw'


class MediaIngestor:
    """Accepts one in-memory payload and hands it to the blob store.

    The whole payload is held in memory for the request; there is no
    streaming or chunking. Content type is detected automatically when the
    client does not declare a useful one, and objects are grouped under a
    fixed namespace.
    """

    def __init__(self, blob_store: Optional[BlobStore], namespace: str = 'stories',
                 max_bytes: Optional[int] = None):
        self.blob_store = blob_store
        self.namespace = namespace
        self.max_bytes = max_bytes

    def detect_content_type(self, payload: bytes, declared: Optional[str]) -> str:
        if declared and declared != OCTET_STREAM:
            return declared.split(';', 1)[0].strip().lower()
        return sniff_content_type(payload)

    def make_key(self, resource_type: str, content_type: str, filename: Optional[str] = None) -> str:
        ext = mimetypes.guess_extension(content_type) or ''
        if not ext and filename and '.' in filename:
            ext = '.' + filename.rsplit('.', 1)[1].lower()
        return f'{self.namespace}/{resource_type}/{uuid.uuid4().hex}{ext}'

    async def ingest(self, payload: Optional[bytes], declared_mime_type: Optional[str] = None,
                     filename: Optional[str] = None) -> MediaReference:
        if not payload:
            raise NoPayload()
        if self.max_bytes and len(payload) > self.max_bytes:
            raise PayloadTooLarge(f'File too large. Max size is {self.max_bytes} bytes')

        content_type = self.detect_content_type(payload, declared_mime_type)
        resource_type = resource_type_for(content_type)
        key = self.make_key(resource_type, content_type, filename)
        try:
            url = await self.blob_store.upload(key, payload, content_type)
        except UpstreamUnavailable as e:
            UPLOAD_FAILURES.inc()
            logger.error({'msg': 'media_upload_failed', 'key': key, 'error': e.message})
            raise
        logger.info({'msg': 'media_uploaded', 'key': key, 'size': len(payload),
                     'content_type': content_type})
        return MediaReference(url=url, key=key, content_type=content_type,
                              resource_type=resource_type, size=len(payload))
