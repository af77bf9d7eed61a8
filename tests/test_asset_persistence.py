"""Tests for downloading generated assets and storing them durably."""

import httpx
import pytest

from conftest import FAST_RETRY, TRUSTED, FakeStore, SleepRecorder, download_transport
from mediaforge.schemas.generation import AssetRef
from mediaforge.services.asset_persistence import (
    DEFAULT_MIME_TYPE,
    AssetPersistenceService,
    PersistContext,
    filename_from_url,
    is_trusted_url,
    mime_from_extension,
)
from mediaforge.services.error_handling import StorageError, StorageErrorCode

PNG_URL = "https://replicate.delivery/pbxt/abc/out-0.png"
PNG_BYTES = b"\x89PNG fake image bytes"


def _service(client, primary, fallback, **kwargs):
    return AssetPersistenceService(
        client,
        primary,
        fallback,
        TRUSTED,
        retry_config=FAST_RETRY,
        sleep=SleepRecorder(),
        **kwargs,
    )


# -- helpers ------------------------------------------------------------------

@pytest.mark.parametrize("url, trusted", [
    ("https://replicate.delivery/x.png", True),
    ("https://pbxt.replicate.delivery/x.png", True),
    ("http://replicate.delivery/x.png", True),
    ("https://REPLICATE.delivery/x.png", True),
    ("ftp://replicate.delivery/x.png", False),
    ("https://replicate.delivery.evil.com/x.png", False),
    ("https://evil.com/replicate.delivery/x.png", False),
    ("https://notreplicate.delivery/x.png", False),
    ("data:image/png;base64,AAAA", False),
    ("not a url", False),
])
def test_is_trusted_url(url, trusted):
    assert is_trusted_url(url, TRUSTED) is trusted


def test_filename_and_extension_helpers():
    assert filename_from_url("https://replicate.delivery/a/out%201.webp?x=1") == "out 1.webp"
    assert filename_from_url("https://replicate.delivery/") == "generated-file"
    assert mime_from_extension("https://replicate.delivery/a/clip.MP4") == "video/mp4"
    assert mime_from_extension("https://replicate.delivery/a/blob") is None
    assert mime_from_extension("https://replicate.delivery/a/file.xyz") is None


# -- validation ---------------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("url", [
    "https://evil.example.com/out.png",
    "ftp://replicate.delivery/out.png",
])
async def test_untrusted_url_is_rejected_without_network_calls(url):
    calls = []
    primary, fallback = FakeStore("primary"), FakeStore("fallback")
    async with httpx.AsyncClient(transport=download_transport({}, calls)) as client:
        service = _service(client, primary, fallback)
        with pytest.raises(StorageError) as excinfo:
            await service.persist(AssetRef(original_url=url))

    assert excinfo.value.code is StorageErrorCode.VALIDATION_ERROR
    assert calls == []
    assert primary.attempts == 0 and fallback.attempts == 0


# -- primary / fallback -------------------------------------------------------

@pytest.mark.asyncio
async def test_primary_success():
    primary, fallback = FakeStore("cloudinary"), FakeStore("supabase")
    async with httpx.AsyncClient(transport=download_transport({PNG_URL: PNG_BYTES})) as client:
        service = _service(client, primary, fallback)
        record = await service.persist(
            AssetRef(original_url=PNG_URL),
            PersistContext(model_id="fast-image", prompt="a cat"),
        )

    assert record.persistent is True
    assert record.provider == "primary"
    assert record.provider_name == "cloudinary"
    assert record.stored_url == "https://cloudinary.example/1/out-0.png"
    assert record.stored_id == "cloudinary-1"
    assert record.original_url == PNG_URL
    assert record.mime_type == "image/png"
    assert record.file_size_bytes == len(PNG_BYTES)
    assert record.width == 1024 and record.height == 768
    assert fallback.attempts == 0

    data, metadata = primary.uploads[0]
    assert data == PNG_BYTES
    assert metadata.filename == "out-0.png"
    assert metadata.model_id == "fast-image"
    assert metadata.prompt == "a cat"


@pytest.mark.asyncio
async def test_primary_retried_then_fallback_used():
    primary, fallback = FakeStore("cloudinary", failures=10), FakeStore("supabase")
    async with httpx.AsyncClient(transport=download_transport({PNG_URL: PNG_BYTES})) as client:
        service = _service(client, primary, fallback)
        record = await service.persist(AssetRef(original_url=PNG_URL))

    assert primary.attempts == FAST_RETRY.max_attempts
    assert record.persistent is True
    assert record.provider == "fallback"
    assert record.provider_name == "supabase"
    assert record.stored_url.startswith("https://supabase.example/")


@pytest.mark.asyncio
async def test_transient_primary_failure_recovers_on_retry():
    primary, fallback = FakeStore("cloudinary", failures=1), FakeStore("supabase")
    async with httpx.AsyncClient(transport=download_transport({PNG_URL: PNG_BYTES})) as client:
        service = _service(client, primary, fallback)
        record = await service.persist(AssetRef(original_url=PNG_URL))

    assert record.provider == "primary"
    assert primary.attempts == 2
    assert fallback.attempts == 0


@pytest.mark.asyncio
async def test_both_stores_fail_yields_ephemeral_record():
    primary, fallback = FakeStore("cloudinary", failures=10), FakeStore("supabase", failures=10)
    async with httpx.AsyncClient(transport=download_transport({PNG_URL: PNG_BYTES})) as client:
        service = _service(client, primary, fallback)
        record = await service.persist(AssetRef(original_url=PNG_URL))

    assert record.persistent is False
    assert record.provider == "none"
    assert record.stored_url == PNG_URL
    assert record.stored_id is None
    assert record.mime_type == "image/png"
    assert record.file_size_bytes == len(PNG_BYTES)


@pytest.mark.asyncio
async def test_missing_primary_goes_straight_to_fallback():
    fallback = FakeStore("supabase")
    async with httpx.AsyncClient(transport=download_transport({PNG_URL: PNG_BYTES})) as client:
        service = _service(client, None, fallback)
        record = await service.persist(AssetRef(original_url=PNG_URL))

    assert record.provider == "fallback"
    assert fallback.attempts == 1


@pytest.mark.asyncio
async def test_no_stores_configured_yields_ephemeral_record():
    async with httpx.AsyncClient(transport=download_transport({PNG_URL: PNG_BYTES})) as client:
        service = _service(client, None, None)
        record = await service.persist(AssetRef(original_url=PNG_URL))

    assert record.persistent is False
    assert record.provider == "none"


# -- download failures --------------------------------------------------------

@pytest.mark.asyncio
async def test_download_failure_yields_ephemeral_record():
    primary = FakeStore("cloudinary")
    missing = "https://replicate.delivery/gone/out.webp"
    async with httpx.AsyncClient(transport=download_transport({})) as client:
        service = _service(client, primary, FakeStore("supabase"))
        record = await service.persist(AssetRef(original_url=missing))

    assert record.persistent is False
    assert record.stored_url == missing
    assert record.mime_type == "image/webp"
    assert record.file_size_bytes == 0
    assert primary.attempts == 0


@pytest.mark.asyncio
async def test_oversized_download_is_not_uploaded():
    primary = FakeStore("cloudinary")
    async with httpx.AsyncClient(transport=download_transport({PNG_URL: PNG_BYTES})) as client:
        service = _service(client, primary, FakeStore("supabase"), max_download_size=4)
        with pytest.raises(StorageError) as excinfo:
            await service.download(PNG_URL)
        record = await service.persist(AssetRef(original_url=PNG_URL))

    assert excinfo.value.code is StorageErrorCode.FILE_TOO_LARGE
    assert record.persistent is False
    assert primary.attempts == 0


@pytest.mark.asyncio
async def test_download_reports_monotonic_progress():
    chunks = [b"a" * 10, b"b" * 10, b"c" * 5]

    async def body():
        for chunk in chunks:
            yield chunk

    def handler(request):
        return httpx.Response(200, content=body(), headers={"content-length": "25"})

    progress = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = _service(client, FakeStore("p"), FakeStore("f"))
        data = await service.download(PNG_URL, progress.append)

    assert data == b"".join(chunks)
    loaded = [p.loaded for p in progress]
    assert loaded == sorted(loaded)
    assert loaded[-1] == 25
    assert progress[-1].total == 25
    assert progress[-1].percentage == 100.0


@pytest.mark.asyncio
async def test_progress_stays_monotonic_when_a_dropped_download_is_retried():
    attempts = []

    async def dropped():
        yield b"a" * 10
        yield b"b" * 10
        raise httpx.ReadError("connection reset by peer")

    async def complete():
        for chunk in (b"a" * 10, b"b" * 10, b"c" * 5):
            yield chunk

    def handler(request):
        attempts.append(request)
        body = dropped() if len(attempts) == 1 else complete()
        return httpx.Response(200, content=body, headers={"content-length": "25"})

    progress = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = _service(client, FakeStore("p"), FakeStore("f"))
        data = await service.download(PNG_URL, progress.append)

    assert len(attempts) == 2
    assert len(data) == 25
    loaded = [p.loaded for p in progress]
    assert loaded == [10, 20, 25]
    assert all(a < b for a, b in zip(loaded, loaded[1:]))


# -- MIME detection -----------------------------------------------------------

@pytest.mark.asyncio
async def test_mime_from_extension_skips_head():
    calls = []
    async with httpx.AsyncClient(transport=download_transport({}, calls, head_type="text/plain")) as client:
        service = _service(client, None, None)
        assert await service.detect_mime_type(PNG_URL) == "image/png"
    assert calls == []


@pytest.mark.asyncio
async def test_mime_from_head_when_no_extension():
    calls = []
    url = "https://replicate.delivery/pbxt/abc/output"
    transport = download_transport({}, calls, head_type="video/mp4; codecs=avc1")
    async with httpx.AsyncClient(transport=transport) as client:
        service = _service(client, None, None)
        assert await service.detect_mime_type(url) == "video/mp4"
    assert calls == [("HEAD", url)]


@pytest.mark.asyncio
async def test_mime_defaults_to_octet_stream():
    url = "https://replicate.delivery/pbxt/abc/output"
    async with httpx.AsyncClient(transport=download_transport({})) as client:
        service = _service(client, None, None)
        assert await service.detect_mime_type(url) == DEFAULT_MIME_TYPE


@pytest.mark.asyncio
async def test_mime_detection_survives_head_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    url = "https://replicate.delivery/pbxt/abc/output"
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = _service(client, None, None)
        assert await service.detect_mime_type(url) == DEFAULT_MIME_TYPE


# -- batch and delete ---------------------------------------------------------

@pytest.mark.asyncio
async def test_persist_all_preserves_order():
    urls = ["https://replicate.delivery/u1.png", "https://replicate.delivery/u2.png"]
    payloads = {urls[0]: b"one", urls[1]: b"two"}
    primary = FakeStore("cloudinary")
    async with httpx.AsyncClient(transport=download_transport(payloads)) as client:
        service = _service(client, primary, FakeStore("supabase"))
        records = await service.persist_all([AssetRef(original_url=u) for u in urls])

    assert [r.original_url for r in records] == urls
    assert [r.stored_id for r in records] == ["cloudinary-1", "cloudinary-2"]
    assert [d for d, _ in primary.uploads] == [b"one", b"two"]


@pytest.mark.asyncio
async def test_delete_routes_to_holding_store():
    primary, fallback = FakeStore("cloudinary", failures=10), FakeStore("supabase")
    async with httpx.AsyncClient(transport=download_transport({PNG_URL: PNG_BYTES})) as client:
        service = _service(client, primary, fallback)
        record = await service.persist(AssetRef(original_url=PNG_URL))
        assert await service.delete(record) is True

    assert fallback.deleted == [("supabase-1", "image/png")]
    assert primary.deleted == []


@pytest.mark.asyncio
async def test_delete_ephemeral_record_is_noop():
    primary = FakeStore("cloudinary", failures=10)
    fallback = FakeStore("supabase", failures=10)
    async with httpx.AsyncClient(transport=download_transport({PNG_URL: PNG_BYTES})) as client:
        service = _service(client, primary, fallback)
        record = await service.persist(AssetRef(original_url=PNG_URL))
        assert await service.delete(record) is False
