from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from livehls.exceptions import PublishError
from livehls.publisher.storage import S3ObjectStore


class FakeS3Client:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = []

    def put_object(self, **kwargs):
        body = kwargs["Body"].read()
        self.calls.append({**kwargs, "Body": body})
        if len(self.calls) <= self.failures:
            raise ClientError({"Error": {"Code": "SlowDown", "Message": "Reduce your request rate"}}, "PutObject")
        return {"ETag": '"abc"'}


def test_put_object_parameters() -> None:
    client = FakeS3Client()
    store = S3ObjectStore(client=client, retry_delay=0.0)

    store.put(
        bucket="live-bucket",
        key="live-streams/stream-abc/master.m3u8",
        body=b"#EXTM3U\n",
        content_type="application/vnd.apple.mpegurl",
        cache_control="no-cache",
        acl="public-read",
    )

    (call,) = client.calls
    assert call == {
        "Bucket": "live-bucket",
        "Key": "live-streams/stream-abc/master.m3u8",
        "Body": b"#EXTM3U\n",
        "ContentType": "application/vnd.apple.mpegurl",
        "CacheControl": "no-cache",
        "ACL": "public-read",
    }


def test_acl_is_omitted_when_not_configured() -> None:
    client = FakeS3Client()
    S3ObjectStore(client=client).put(bucket="b", key="k.ts", body=b"x", content_type="video/MP2T")

    assert "ACL" not in client.calls[0]
    assert "CacheControl" not in client.calls[0]


def test_transient_errors_are_retried_with_full_body() -> None:
    client = FakeS3Client(failures=2)
    store = S3ObjectStore(client=client, retry_attempts=3, retry_delay=0.0)

    store.put(bucket="b", key="seg.ts", body=b"payload", content_type="video/MP2T")

    assert len(client.calls) == 3
    assert all(call["Body"] == b"payload" for call in client.calls)


def test_exhausted_retries_raise_publish_error() -> None:
    client = FakeS3Client(failures=10)
    store = S3ObjectStore(client=client, retry_attempts=2, retry_delay=0.0)

    with pytest.raises(PublishError) as excinfo:
        store.put(bucket="b", key="seg.ts", body=b"payload", content_type="video/MP2T")

    assert len(client.calls) == 2
    assert "s3://b/seg.ts" in str(excinfo.value)
