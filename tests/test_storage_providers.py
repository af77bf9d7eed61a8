"""Tests for the Cloudinary and Supabase storage providers."""

import hashlib
import json
from datetime import datetime, timezone

import httpx
import pytest

from mediaforge.config import Settings, check_storage_config
from mediaforge.services.error_handling import (
    StorageError,
    StorageErrorCode,
    StorageProviderError,
    classify,
)
from mediaforge.services.storage.base import UploadMetadata, slugify_prompt
from mediaforge.services.storage.cloudinary import CloudinaryStorage, sign_params
from mediaforge.services.storage.supabase import SupabaseStorage, file_extension

GENERATED_AT = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)


def _meta(mime="image/png", filename="out-0.png", prompt="A Cat, on the moon!"):
    return UploadMetadata(
        filename=filename,
        mime_type=mime,
        original_url=f"https://replicate.delivery/x/{filename}",
        model_id="fast-image",
        prompt=prompt,
        generated_at=GENERATED_AT,
    )


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# -- shared helpers -----------------------------------------------------------

def test_content_folder_by_type_and_date():
    assert _meta().content_folder == "images/2026/03/04"
    assert _meta(mime="video/mp4", filename="clip.mp4").content_folder == "videos/2026/03/04"


def test_slugify_prompt():
    assert slugify_prompt("A Cat, on the moon!") == "a-cat-on-the-moon"
    assert len(slugify_prompt("word " * 40)) == 30


def test_check_storage_config():
    settings = Settings(
        _env_file=None,
        CLOUDINARY_CLOUD_NAME="demo", CLOUDINARY_API_KEY="k", CLOUDINARY_API_SECRET="s",
        SUPABASE_URL="", SUPABASE_SERVICE_KEY="",
    )
    assert check_storage_config(settings) == {"cloudinary": True, "supabase": False}


# -- Cloudinary ---------------------------------------------------------------

def test_sign_params_matches_cloudinary_scheme():
    params = {"public_id": "abc", "timestamp": 1700000000, "folder": "f", "api_key": "ignored", "tags": ""}
    expected = hashlib.sha1(b"folder=f&public_id=abc&timestamp=1700000000secret").hexdigest()
    assert sign_params(params, "secret") == expected


def test_cloudinary_requires_credentials():
    with pytest.raises(StorageError) as excinfo:
        CloudinaryStorage("demo", "", "secret", httpx.AsyncClient())
    assert excinfo.value.code is StorageErrorCode.MISSING_ENVIRONMENT


@pytest.mark.asyncio
async def test_cloudinary_upload_sends_signed_multipart():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={
            "public_id": "mediaforge/images/2026/03/04/1772600767000-a-cat-on-the-moon-abcdef",
            "secure_url": "https://res.cloudinary.com/demo/image/upload/v1/x.png",
            "url": "http://res.cloudinary.com/demo/image/upload/v1/x.png",
            "width": 1024,
            "height": 768,
            "bytes": 5,
        })

    async with _client(handler) as client:
        store = CloudinaryStorage("demo", "key", "secret", client, upload_url="https://api.cloudinary.com/v1_1")
        stored = await store.upload(b"hello", _meta())

    assert seen["url"] == "https://api.cloudinary.com/v1_1/demo/image/upload"
    body = seen["body"]
    assert b'name="signature"' in body
    assert b'name="api_key"' in body
    assert b"mediaforge/images/2026/03/04" in body
    assert b"hello" in body
    assert stored.url.startswith("https://res.cloudinary.com/")
    assert stored.width == 1024 and stored.height == 768
    assert stored.size_bytes == 5


@pytest.mark.asyncio
async def test_cloudinary_video_uses_video_resource_type():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"public_id": "v", "secure_url": "https://res.cloudinary.com/v.mp4", "duration": 5.0})

    async with _client(handler) as client:
        store = CloudinaryStorage("demo", "key", "secret", client)
        stored = await store.upload(b"mp4", _meta(mime="video/mp4", filename="clip.mp4"))

    assert seen["url"].endswith("/demo/video/upload")
    assert stored.duration == 5.0


@pytest.mark.asyncio
async def test_cloudinary_error_body_raises_provider_error():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "Invalid image file"}})

    async with _client(handler) as client:
        store = CloudinaryStorage("demo", "key", "secret", client)
        with pytest.raises(StorageProviderError) as excinfo:
            await store.upload(b"x", _meta())

    assert excinfo.value.status_code == 400
    assert classify(excinfo.value, "cloudinary-upload").code is StorageErrorCode.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_cloudinary_delete():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"result": "ok"})

    async with _client(handler) as client:
        store = CloudinaryStorage("demo", "key", "secret", client)
        assert await store.delete("folder/asset-1", "video/mp4") is True

    assert seen["url"].endswith("/demo/video/destroy")
    assert "public_id=folder%2Fasset-1" in seen["body"]


# -- Supabase -----------------------------------------------------------------

def test_file_extension():
    assert file_extension("out-0.PNG", "image/png") == ".png"
    assert file_extension("noext", "video/quicktime") == ".mov"
    assert file_extension("weird.extension", "image/webp") == ".webp"


def test_supabase_requires_configuration():
    with pytest.raises(StorageError) as excinfo:
        SupabaseStorage("", "key", httpx.AsyncClient())
    assert excinfo.value.code is StorageErrorCode.MISSING_ENVIRONMENT


@pytest.mark.asyncio
async def test_supabase_upload():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = request.content
        return httpx.Response(200, json={"Key": "generated-content/x"})

    async with _client(handler) as client:
        store = SupabaseStorage("https://proj.supabase.co", "service-key", client)
        stored = await store.upload(b"png-bytes", _meta())

    assert seen["method"] == "POST"
    assert seen["path"].startswith("/storage/v1/object/generated-content/images/2026/03/04/")
    assert seen["path"].endswith(".png")
    assert seen["headers"]["authorization"] == "Bearer service-key"
    assert seen["headers"]["content-type"] == "image/png"
    assert seen["headers"]["x-upsert"] == "false"
    assert seen["body"] == b"png-bytes"
    assert stored.url == f"https://proj.supabase.co/storage/v1/object/public/generated-content/{stored.id}"
    assert stored.size_bytes == len(b"png-bytes")


@pytest.mark.asyncio
async def test_supabase_rejects_oversized_file_without_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    async with _client(handler) as client:
        store = SupabaseStorage("https://proj.supabase.co", "k", client, max_file_size=4)
        with pytest.raises(StorageError) as excinfo:
            await store.upload(b"12345", _meta())

    assert excinfo.value.code is StorageErrorCode.FILE_TOO_LARGE
    assert calls == []


@pytest.mark.asyncio
async def test_supabase_rejects_disallowed_mime_type():
    async with _client(lambda r: httpx.Response(200, json={})) as client:
        store = SupabaseStorage("https://proj.supabase.co", "k", client)
        with pytest.raises(StorageError) as excinfo:
            await store.upload(b"x", _meta(mime="application/octet-stream", filename="blob"))
    assert excinfo.value.code is StorageErrorCode.INVALID_FILE_TYPE


@pytest.mark.asyncio
async def test_supabase_bucket_missing():
    def handler(request):
        return httpx.Response(400, json={"statusCode": "404", "error": "Not found", "message": "Bucket not found"})

    async with _client(handler) as client:
        store = SupabaseStorage("https://proj.supabase.co", "k", client)
        with pytest.raises(StorageProviderError) as excinfo:
            await store.upload(b"x", _meta())

    assert classify(excinfo.value, "supabase-upload").code is StorageErrorCode.BUCKET_NOT_FOUND


@pytest.mark.asyncio
async def test_supabase_delete_sends_prefixes():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["json"] = json.loads(request.content)
        return httpx.Response(200, json=[{"name": "images/a.png"}])

    async with _client(handler) as client:
        store = SupabaseStorage("https://proj.supabase.co", "k", client)
        assert await store.delete("images/a.png") is True

    assert seen["method"] == "DELETE"
    assert seen["json"] == {"prefixes": ["images/a.png"]}
