"""Evidence photo storage on an S3-compatible bucket (Cloudflare R2 in production).

boto3 is synchronous; calls run in a worker thread so the sync engine's
event loop keeps serving other uploads.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from workproof.core.config import ObjectStoreConfig
from workproof.core.errors import FatalSyncError, RateLimitedError, TransientSyncError
from workproof.core.metrics import workproof_dependency_failures_total

logger = structlog.get_logger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})
_THROTTLE_CODES = frozenset({"SlowDown", "Throttling", "TooManyRequests", "RequestLimitExceeded"})
_AUTH_CODES = frozenset({"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"})


class ObjectStore(Protocol):
    async def put_object(
        self, key: str, data: bytes, *, content_type: str = "image/jpeg"
    ) -> str: ...

    async def get_object(self, key: str) -> bytes | None: ...


def _map_client_error(exc: ClientError, key: str) -> Exception:
    error = exc.response.get("Error", {})
    code = str(error.get("Code", ""))
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
    details = {"key": key, "code": code, "status_code": status}

    if code in _THROTTLE_CODES or status == 429 or status == 503:
        return RateLimitedError("Object store throttled the request", details=details)
    if status >= 500:
        return TransientSyncError(f"Object store error {status}", details=details)
    if code in _AUTH_CODES or status in (401, 403):
        return FatalSyncError("Object store rejected credentials", "auth_rejected", details)
    return FatalSyncError(
        f"Object store rejected the request ({code})", "validation_rejected", details
    )


class S3ObjectStore:
    """put/get of evidence photos by object key."""

    def __init__(self, config: ObjectStoreConfig, *, client: Any | None = None) -> None:
        self._bucket = config.bucket
        self._public_url = config.public_url.rstrip("/") if config.public_url else None
        self._client = client or boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id or None,
            aws_secret_access_key=config.secret_access_key.get_secret_value() or None,
            region_name=config.region,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )

    def public_url(self, key: str) -> str | None:
        if not self._public_url:
            return None
        return f"{self._public_url}/{key}"

    async def put_object(self, key: str, data: bytes, *, content_type: str = "image/jpeg") -> str:
        """Store ``data`` under ``key`` and return the key as the photo reference."""
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except ClientError as exc:
            workproof_dependency_failures_total.labels(dependency="object_store").inc()
            mapped = _map_client_error(exc, key)
            logger.warning("Object store put failed", key=key, error=str(exc))
            raise mapped from exc
        except BotoCoreError as exc:
            workproof_dependency_failures_total.labels(dependency="object_store").inc()
            logger.warning("Object store unreachable", key=key, error=str(exc))
            raise TransientSyncError("Object store unreachable", details={"key": key}) from exc

        logger.debug("Object stored", key=key, size_bytes=len(data))
        return key

    async def get_object(self, key: str) -> bytes | None:
        """Fetch the bytes stored under ``key``; None if the object does not exist."""
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self._bucket, Key=key
            )
            body = response["Body"]
            try:
                return await asyncio.to_thread(body.read)
            finally:
                body.close()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return None
            workproof_dependency_failures_total.labels(dependency="object_store").inc()
            raise _map_client_error(exc, key) from exc
        except BotoCoreError as exc:
            workproof_dependency_failures_total.labels(dependency="object_store").inc()
            raise TransientSyncError("Object store unreachable", details={"key": key}) from exc
