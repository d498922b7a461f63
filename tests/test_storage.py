from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from assets_backend.integrations.storage.local_storage import LocalObjectStorage
from assets_backend.integrations.storage.object_storage import (
    build_asset_storage_key,
    build_thumbnail_storage_key,
)
from assets_backend.integrations.storage.s3_storage import S3ObjectStorage


def test_storage_key_layout():
    assert build_asset_storage_key(owner_id=7, filename="cat-1a2b.png") == "7/cat-1a2b.png"
    assert (
        build_thumbnail_storage_key(source_key="7/cat-1a2b.png", size=512, fmt="webp")
        == "thumbnails/7/cat-1a2b_512.webp"
    )
    assert (
        build_thumbnail_storage_key(source_key="cat.png", size=256, fmt="jpeg")
        == "thumbnails/cat_256.jpeg"
    )


@pytest.mark.anyio
async def test_local_storage_put_get_exists_delete(tmp_path: Path):
    s = LocalObjectStorage(root_dir=str(tmp_path), public_base_url="http://cdn.test/assets/")

    assert await s.exists("1/a.png") is False
    await s.put_bytes("1/a.png", b"data", content_type="image/png")
    assert (tmp_path / "1" / "a.png").read_bytes() == b"data"
    assert await s.exists("1/a.png") is True
    assert await s.get_bytes("1/a.png") == b"data"
    assert await s.url("1/a b.png") == "http://cdn.test/assets/1/a%20b.png"

    await s.delete("1/a.png")
    assert await s.exists("1/a.png") is False
    # Deleting a missing object is not an error.
    await s.delete("1/a.png")


@pytest.mark.anyio
async def test_local_storage_rejects_traversal(tmp_path: Path):
    s = LocalObjectStorage(root_dir=str(tmp_path / "root"))
    for key in ("../escape.txt", "1/../../escape.txt", ""):
        with pytest.raises(ValueError):
            await s.put_bytes(key, b"x")


class _FakeBody:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data


class _FakeS3Client:
    def __init__(self) -> None:
        self.put_calls: list[dict[str, Any]] = []
        self.get_calls: list[dict[str, Any]] = []
        self.delete_calls: list[dict[str, Any]] = []
        self.present: set[str] = set()

    def put_object(self, **kwargs: Any) -> None:
        self.put_calls.append(dict(kwargs))
        self.present.add(str(kwargs["Key"]))

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self.get_calls.append({"Bucket": Bucket, "Key": Key})
        return {"Body": _FakeBody(b"hello")}

    def delete_object(self, *, Bucket: str, Key: str) -> None:
        self.delete_calls.append({"Bucket": Bucket, "Key": Key})

    def head_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        _ = Bucket
        if Key == "boom":
            raise ClientError({"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadObject")
        if Key not in self.present:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {}

    def generate_presigned_url(self, op: str, *, Params: dict[str, Any], ExpiresIn: int) -> str:
        return f"https://s3.test/{Params['Bucket']}/{Params['Key']}?op={op}&ttl={ExpiresIn}"


def _patched_s3(monkeypatch: pytest.MonkeyPatch, fake: _FakeS3Client) -> list[dict[str, Any]]:
    boto3_calls: list[dict[str, Any]] = []

    import boto3

    def _fake_client(service_name: str, **kwargs: Any):
        boto3_calls.append({"service_name": service_name, **kwargs})
        return fake

    async def _run_inline(fn, *args, **kwargs):  # type: ignore[no-untyped-def]
        _ = args, kwargs
        return fn()

    monkeypatch.setattr(boto3, "client", _fake_client)
    monkeypatch.setattr(
        "assets_backend.integrations.storage.s3_storage.run_in_threadpool", _run_inline
    )
    return boto3_calls


@pytest.mark.anyio
async def test_s3_object_storage_put_get_delete(monkeypatch: pytest.MonkeyPatch):
    fake = _FakeS3Client()
    boto3_calls = _patched_s3(monkeypatch, fake)

    s = S3ObjectStorage(
        endpoint_url="http://localhost:9000",
        region="",
        bucket="bucket",
        access_key_id="ak",
        secret_access_key="sk",
        force_path_style=True,
    )
    assert boto3_calls and boto3_calls[0]["service_name"] == "s3"
    assert boto3_calls[0]["region_name"] is None

    await s.put_bytes("k1", b"data")
    await s.put_bytes("k2", b"data2", content_type="image/png")
    out = await s.get_bytes("k3")
    await s.delete("k4")

    assert out == b"hello"
    assert fake.put_calls[0]["Bucket"] == "bucket"
    assert fake.put_calls[0]["Key"] == "k1"
    assert "ContentType" not in fake.put_calls[0]
    assert fake.put_calls[1]["ContentType"] == "image/png"
    assert fake.get_calls == [{"Bucket": "bucket", "Key": "k3"}]
    assert fake.delete_calls == [{"Bucket": "bucket", "Key": "k4"}]


@pytest.mark.anyio
async def test_s3_object_storage_exists_and_presigned_url(monkeypatch: pytest.MonkeyPatch):
    fake = _FakeS3Client()
    _patched_s3(monkeypatch, fake)

    s = S3ObjectStorage(
        endpoint_url="http://localhost:9000",
        region="us-east-1",
        bucket="bucket",
        access_key_id="ak",
        secret_access_key="sk",
        force_path_style=False,
    )

    assert await s.exists("1/a.png") is False
    await s.put_bytes("1/a.png", b"data")
    assert await s.exists("1/a.png") is True

    # Only "not found" maps to False; other errors propagate.
    with pytest.raises(ClientError):
        await s.exists("boom")

    url = await s.url("1/a.png")
    assert url == "https://s3.test/bucket/1/a.png?op=get_object&ttl=3600"
