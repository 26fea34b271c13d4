"""Tests for the Kie.ai client, Supabase storage client and result materializer."""

from dataclasses import replace
from uuid import uuid4

import httpx
import pytest

from facet.services.exceptions import (
    NoTaskIdError,
    ProviderRejectedError,
    StorageError,
    TransportError,
)
from facet.services.providers.kie_client import KieClient
from facet.services.providers.registry import ModelRegistry
from facet.services.storage.materializer import ResultMaterializer, extension_for, result_path
from facet.services.storage.supabase_storage import SupabaseStorageClient

FLUX = ModelRegistry.default().require("flux-kontext-pro")


def kie_with(handler) -> KieClient:
    return KieClient("test-key", transport=httpx.MockTransport(handler))


class TestKieClient:
    @pytest.mark.asyncio
    async def test_submit_returns_task_id(self):
        client = kie_with(lambda request: httpx.Response(200, json={"code": 200, "data": {"taskId": "t-1"}}))

        result = await client.submit(FLUX, {"prompt": "p"})

        assert result.task_id == "t-1"
        assert result.result_url is None

    @pytest.mark.asyncio
    async def test_submit_non_2xx_is_transport_error(self):
        client = kie_with(lambda request: httpx.Response(429, json={"msg": "slow down"}))

        with pytest.raises(TransportError, match="API error: 429") as exc_info:
            await client.submit(FLUX, {})

        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_submit_api_code_is_rejection(self):
        client = kie_with(lambda request: httpx.Response(200, json={"code": 402, "msg": "Insufficient credits"}))

        with pytest.raises(ProviderRejectedError, match="Insufficient credits") as exc_info:
            await client.submit(FLUX, {})

        assert exc_info.value.code == "402"

    @pytest.mark.asyncio
    async def test_submit_without_task_id(self):
        client = kie_with(lambda request: httpx.Response(200, json={"code": 200, "data": None}))

        with pytest.raises(NoTaskIdError):
            await client.submit(FLUX, {})

    @pytest.mark.asyncio
    async def test_network_failure_is_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError, match="Network error"):
            await kie_with(handler).get_status(FLUX, "t-1")

    @pytest.mark.asyncio
    async def test_malformed_endpoint_is_transport_error(self):
        config = replace(FLUX, status_endpoint="https://api.kie.test:notaport/status")

        with pytest.raises(TransportError, match="Network error"):
            await kie_with(lambda request: httpx.Response(200, json={})).get_status(config, "t-1")

    @pytest.mark.asyncio
    async def test_get_status_returns_raw_payload(self):
        payload = {"code": 200, "data": {"successFlag": 0}}
        client = kie_with(lambda request: httpx.Response(200, json=payload))

        assert await client.get_status(FLUX, "t-1") == payload


class TestSupabaseStorage:
    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Key": "processed-images/a.png"})

        storage = SupabaseStorageClient(
            "https://proj.supabase.co/", "service-key", transport=httpx.MockTransport(handler)
        )

        url = await storage.upload("results/a.png", b"png", "image/png")

        assert url == "https://proj.supabase.co/storage/v1/object/public/processed-images/results/a.png"
        assert seen[0].url.path == "/storage/v1/object/processed-images/results/a.png"
        assert seen[0].headers["x-upsert"] == "true"
        assert seen[0].headers["Authorization"] == "Bearer service-key"

    @pytest.mark.asyncio
    async def test_upload_failure(self):
        storage = SupabaseStorageClient(
            "https://proj.supabase.co",
            "service-key",
            transport=httpx.MockTransport(lambda request: httpx.Response(403, text="denied")),
        )

        with pytest.raises(StorageError, match="Upload failed \\(403\\)"):
            await storage.upload("results/a.png", b"png", "image/png")


class RecordingStore:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = []

    async def upload(self, path, data, content_type):
        if self.fail:
            raise StorageError("bucket missing")
        self.uploads.append((path, data, content_type))
        return f"https://storage.test/{path}"

    def get_public_url(self, path):
        return f"https://storage.test/{path}"


class TestMaterializer:
    def test_extension_for(self):
        assert extension_for("image/jpeg; charset=binary") == "jpg"
        assert extension_for("image/webp") == "webp"
        assert extension_for(None) == "png"

    @pytest.mark.asyncio
    async def test_materialize_copies_result(self):
        job_id = uuid4()
        store = RecordingStore()
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, content=b"img", headers={"content-type": "image/webp"})
        )

        url = await ResultMaterializer(store, transport=transport).materialize(job_id, "https://cdn/x")

        assert url == f"https://storage.test/results/{job_id}.webp"
        assert store.uploads == [(result_path(job_id, "webp"), b"img", "image/webp")]

    @pytest.mark.asyncio
    async def test_download_failure_falls_back_to_provider_url(self):
        store = RecordingStore()
        transport = httpx.MockTransport(lambda request: httpx.Response(410))

        url = await ResultMaterializer(store, transport=transport).materialize(uuid4(), "https://cdn/x")

        assert url == "https://cdn/x"
        assert store.uploads == []

    @pytest.mark.asyncio
    async def test_upload_failure_falls_back_to_provider_url(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"img"))

        url = await ResultMaterializer(RecordingStore(fail=True), transport=transport).materialize(
            uuid4(), "https://cdn/x"
        )

        assert url == "https://cdn/x"

    @pytest.mark.asyncio
    async def test_unparseable_url_falls_back_to_provider_url(self):
        store = RecordingStore()
        bad_url = "https://cdn.example.com:notaport/x.png"

        url = await ResultMaterializer(store).materialize(uuid4(), bad_url)

        assert url == bad_url
        assert store.uploads == []

    @pytest.mark.asyncio
    async def test_unexpected_store_error_falls_back_to_provider_url(self):
        class BrokenStore(RecordingStore):
            async def upload(self, path, data, content_type):
                raise RuntimeError("bucket client crashed")

        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"img"))

        url = await ResultMaterializer(BrokenStore(), transport=transport).materialize(
            uuid4(), "https://cdn/x"
        )

        assert url == "https://cdn/x"
