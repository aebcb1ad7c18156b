"""Unit tests for S3ObjectStore."""

from __future__ import annotations

import io

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from workproof.clients.object_store import S3ObjectStore
from workproof.core.config import ObjectStoreConfig
from workproof.core.errors import FatalSyncError, RateLimitedError, TransientSyncError


def _client_error(code: str, status: int, operation: str = "PutObject") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class _FakeS3:
    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.put_calls: list[dict] = []
        self.error: Exception | None = None

    def put_object(self, **kwargs):
        self.put_calls.append(kwargs)
        if self.error is not None:
            raise self.error
        self.objects[(kwargs["Bucket"], kwargs["Key"])] = kwargs["Body"]
        return {"ETag": '"etag"'}

    def get_object(self, Bucket: str, Key: str):
        if self.error is not None:
            raise self.error
        if (Bucket, Key) not in self.objects:
            raise _client_error("NoSuchKey", 404, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}


def _store(fake: _FakeS3, **overrides) -> S3ObjectStore:
    return S3ObjectStore(ObjectStoreConfig(bucket="evidence-bucket", **overrides), client=fake)


@pytest.mark.asyncio
async def test_put_then_get():
    fake = _FakeS3()
    store = _store(fake)

    key = await store.put_object("evidence/W1/a.png", b"bytes", content_type="image/png")

    assert key == "evidence/W1/a.png"
    assert fake.put_calls[0]["ContentType"] == "image/png"
    assert fake.put_calls[0]["Bucket"] == "evidence-bucket"
    assert await store.get_object(key) == b"bytes"


@pytest.mark.asyncio
async def test_get_missing_object_returns_none():
    assert await _store(_FakeS3()).get_object("evidence/none.jpg") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (_client_error("SlowDown", 503), RateLimitedError),
        (_client_error("InternalError", 500), TransientSyncError),
        (_client_error("AccessDenied", 403), FatalSyncError),
        (_client_error("InvalidArgument", 400), FatalSyncError),
        (EndpointConnectionError(endpoint_url="https://r2.test"), TransientSyncError),
    ],
)
async def test_put_error_mapping(error, expected):
    fake = _FakeS3()
    fake.error = error
    with pytest.raises(expected):
        await _store(fake).put_object("evidence/k.jpg", b"x")


@pytest.mark.asyncio
async def test_auth_rejection_reason():
    fake = _FakeS3()
    fake.error = _client_error("InvalidAccessKeyId", 403)
    with pytest.raises(FatalSyncError) as exc_info:
        await _store(fake).put_object("evidence/k.jpg", b"x")
    assert exc_info.value.reason == "auth_rejected"


@pytest.mark.asyncio
async def test_get_propagates_non_missing_errors():
    fake = _FakeS3()
    fake.error = _client_error("InternalError", 500, "GetObject")
    with pytest.raises(TransientSyncError):
        await _store(fake).get_object("evidence/k.jpg")


def test_public_url():
    assert _store(_FakeS3()).public_url("a/b.jpg") is None
    store = _store(_FakeS3(), public_url="https://cdn.test/")
    assert store.public_url("a/b.jpg") == "https://cdn.test/a/b.jpg"
