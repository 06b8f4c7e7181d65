"""Object storage backends used by the publisher."""
from __future__ import annotations

import io
import logging
import threading
from typing import Any, BinaryIO, Optional, Protocol, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import PublishError
from ..utils import sleep_with_stop

LOGGER = logging.getLogger(__name__)

Body = Union[bytes, BinaryIO]


class ObjectStore(Protocol):
    def put(
        self,
        *,
        bucket: str,
        key: str,
        body: Body,
        content_type: str,
        cache_control: Optional[str] = None,
        acl: Optional[str] = None,
    ) -> None: ...


class S3ObjectStore:
    """``put_object`` with retry and exponential backoff."""

    def __init__(
        self,
        *,
        client: Any = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
        retry_backoff: float = 2.0,
        max_delay: float = 10.0,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self._client = client or boto3.client("s3", region_name=region, endpoint_url=endpoint_url)
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = max(0.0, retry_delay)
        self.retry_backoff = max(1.0, retry_backoff)
        self.max_delay = max(0.0, max_delay)
        self.stop_event = stop_event or threading.Event()

    def put(
        self,
        *,
        bucket: str,
        key: str,
        body: Body,
        content_type: str,
        cache_control: Optional[str] = None,
        acl: Optional[str] = None,
    ) -> None:
        if isinstance(body, (bytes, bytearray)):
            body = io.BytesIO(bytes(body))
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": key,
            "ContentType": content_type,
        }
        if cache_control:
            params["CacheControl"] = cache_control
        if acl:
            params["ACL"] = acl

        last_error: Optional[Exception] = None
        for attempt in range(1, self.retry_attempts + 1):
            body.seek(0)
            try:
                self._client.put_object(Body=body, **params)
                return
            except (ClientError, BotoCoreError) as exc:
                last_error = exc
                if attempt == self.retry_attempts:
                    break
                delay = self._next_delay(attempt)
                LOGGER.warning(
                    "Upload of s3://%s/%s failed (attempt %d/%d); retrying in %.1fs: %s",
                    bucket,
                    key,
                    attempt,
                    self.retry_attempts,
                    delay,
                    exc,
                )
                if sleep_with_stop(delay, self.stop_event):
                    break
        raise PublishError(f"Upload of s3://{bucket}/{key} failed: {last_error}")

    def _next_delay(self, attempt: int) -> float:
        delay = self.retry_delay * (self.retry_backoff ** (attempt - 1))
        return min(delay, self.max_delay)


__all__ = ["ObjectStore", "S3ObjectStore"]
