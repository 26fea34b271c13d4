"""Supabase Storage client (REST) used as the durable blob store."""

from typing import Optional, Protocol

import httpx
import structlog

from facet.services.exceptions import StorageError

logger = structlog.get_logger()


class BlobStore(Protocol):
    """Minimal blob store interface the pipeline depends on."""

    async def upload(self, path: str, data: bytes, content_type: str) -> str: ...

    def get_public_url(self, path: str) -> str: ...


class SupabaseStorageClient:
    """Upload objects to a public Supabase Storage bucket."""

    def __init__(
        self,
        base_url: str,
        service_role_key: str,
        bucket: str = "processed-images",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize storage client.

        Args:
            base_url: Supabase project URL (from SUPABASE_URL env var)
            service_role_key: Service role key (from SUPABASE_SERVICE_ROLE_KEY env var)
            bucket: Target bucket name
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Upload (or overwrite) an object and return its public URL.

        Raises:
            StorageError: Network failure or non-2xx response
        """
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{path}"
        headers = {**self.headers, "Content-Type": content_type, "x-upsert": "true"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, headers=headers, content=data)
        except httpx.TimeoutException as e:
            raise StorageError(f"Upload timeout after {self.timeout}s: {e}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise StorageError(f"Upload network error: {e}")

        if not response.is_success:
            raise StorageError(f"Upload failed ({response.status_code}): {response.text[:200]}")

        logger.debug("storage.uploaded", bucket=self.bucket, path=path, size=len(data))
        return self.get_public_url(path)

    def get_public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"
