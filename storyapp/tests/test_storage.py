import io

import pytest
from botocore.exceptions import ClientError
from PIL import Image

from storyapp.config import Settings
from storyapp.errors import ConfigurationError, NoPayload, PayloadTooLarge, UpstreamUnavailable
from storyapp.storage import InMemoryBlobStore, MediaIngestor, S3BlobStore, build_blob_store


def png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new('RGB', (4, 4), color='red').save(buf, format='PNG')
    return buf.getvalue()


class FailingBlobStore:
    async def upload(self, key, payload, content_type):
        raise UpstreamUnavailable('bucket is down')


class FakeS3Client:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def put_object(self, **kwargs):
        if self.error:
            raise self.error
        self.calls.append(kwargs)
        return {'ETag': '"abc"'}


class FakeSession:
    def __init__(self, client):
        self._client = client
        self.client_kwargs = None

    def client(self, service, **kwargs):
        assert service == 's3'
        self.client_kwargs = kwargs
        return self._client


@pytest.fixture
def ingestor(blob_store):
    return MediaIngestor(blob_store, namespace='stories', max_bytes=1024)


@pytest.mark.asyncio
@pytest.mark.parametrize('payload', [b'', None])
async def test_empty_payload_is_rejected_without_upload(ingestor, blob_store, payload):
    with pytest.raises(NoPayload):
        await ingestor.ingest(payload, 'image/jpeg')
    assert blob_store.objects == {}


@pytest.mark.asyncio
async def test_oversized_payload_is_rejected(ingestor, blob_store):
    with pytest.raises(PayloadTooLarge):
        await ingestor.ingest(b'x' * 1025, 'image/jpeg')
    assert blob_store.objects == {}


@pytest.mark.asyncio
async def test_declared_image_lands_under_namespace(ingestor, blob_store):
    ref = await ingestor.ingest(b'0123456789', 'image/png', 'photo.png')
    assert ref.key.startswith('stories/image/')
    assert ref.key.endswith('.png')
    assert ref.url == f'https://media.example.test/{ref.key}'
    assert ref.resource_type == 'image'
    assert ref.size == 10
    assert blob_store.objects[ref.key] == (b'0123456789', 'image/png')


@pytest.mark.asyncio
async def test_content_type_is_sniffed_when_not_declared(ingestor):
    ref = await ingestor.ingest(png_bytes(), None)
    assert ref.content_type == 'image/png'
    assert ref.key.startswith('stories/image/')


@pytest.mark.asyncio
async def test_octet_stream_is_sniffed_too(ingestor):
    ref = await ingestor.ingest(png_bytes(), 'application/octet-stream')
    assert ref.content_type == 'image/png'


@pytest.mark.asyncio
async def test_unknown_bytes_are_raw(ingestor):
    ref = await ingestor.ingest(b'0123456789', None)
    assert ref.content_type == 'application/octet-stream'
    assert ref.resource_type == 'raw'
    assert ref.key.startswith('stories/raw/')


@pytest.mark.asyncio
async def test_video_resource_type(ingestor):
    ref = await ingestor.ingest(b'0123456789', 'video/mp4')
    assert ref.key.startswith('stories/video/')


@pytest.mark.asyncio
async def test_each_upload_gets_its_own_key(ingestor, blob_store):
    a = await ingestor.ingest(b'0123456789', 'image/jpeg')
    b = await ingestor.ingest(b'0123456789', 'image/jpeg')
    assert a.key != b.key
    assert len(blob_store.objects) == 2


@pytest.mark.asyncio
async def test_upstream_failure_propagates():
    ingestor = MediaIngestor(FailingBlobStore())
    with pytest.raises(UpstreamUnavailable):
        await ingestor.ingest(b'0123456789', 'image/jpeg')


@pytest.mark.asyncio
async def test_s3_store_puts_object_and_returns_bucket_url():
    client = FakeS3Client()
    session = FakeSession(client)
    store = S3BlobStore('media-bucket', region='eu-west-1', session=session)

    url = await store.upload('stories/image/abc.jpg', b'0123456789', 'image/jpeg')

    assert url == 'https://media-bucket.s3.eu-west-1.amazonaws.com/stories/image/abc.jpg'
    assert session.client_kwargs['region_name'] == 'eu-west-1'
    call = client.calls[0]
    assert call['Bucket'] == 'media-bucket'
    assert call['Key'] == 'stories/image/abc.jpg'
    assert call['Body'] == b'0123456789'
    assert call['ContentType'] == 'image/jpeg'


def test_s3_public_url_variants():
    session = FakeSession(FakeS3Client())
    assert S3BlobStore('b', endpoint_url='http://minio:9000/', session=session).public_url('k') == 'http://minio:9000/b/k'
    assert S3BlobStore('b', public_base_url='https://cdn.example.com/', session=session).public_url('k') == 'https://cdn.example.com/k'


@pytest.mark.asyncio
async def test_s3_client_error_becomes_upstream_unavailable():
    error = ClientError({'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'PutObject')
    store = S3BlobStore('media-bucket', session=FakeSession(FakeS3Client(error=error)))
    with pytest.raises(UpstreamUnavailable):
        await store.upload('stories/image/abc.jpg', b'0123456789', 'image/jpeg')


@pytest.fixture
def bare_env(monkeypatch):
    for name in ('AWS_S3_BUCKET', 'AWS_S3_BUCKET_NAME', 'USE_IN_MEMORY_STORAGE'):
        monkeypatch.delenv(name, raising=False)


def test_missing_bucket_is_a_configuration_error(bare_env):
    with pytest.raises(ConfigurationError):
        build_blob_store(Settings(_env_file=None))


def test_in_memory_store_only_when_asked_for(bare_env):
    store = build_blob_store(Settings(_env_file=None, use_in_memory_storage=True))
    assert isinstance(store, InMemoryBlobStore)


def test_configured_bucket_builds_s3_store(bare_env):
    store = build_blob_store(Settings(
        _env_file=None,
        aws_s3_bucket='story-media',
        aws_s3_region='eu-west-1',
        media_public_base_url='https://cdn.example.test',
    ))
    assert isinstance(store, S3BlobStore)
    assert store.bucket == 'story-media'
    assert store.public_url('stories/image/a.png') == 'https://cdn.example.test/stories/image/a.png'


def test_legacy_bucket_name_is_honoured(bare_env, monkeypatch):
    monkeypatch.setenv('AWS_S3_BUCKET_NAME', 'legacy-bucket')
    store = build_blob_store(Settings(_env_file=None))
    assert isinstance(store, S3BlobStore)
    assert store.bucket == 'legacy-bucket'
