"""Re-host provider results in owned storage.

Provider CDN links expire, so a successful result is copied into the durable bucket
before it is recorded. Materialization is best-effort: any failure falls back to the
provider URL so the job can still be finalized.
"""

from typing import Optional
from uuid import UUID

import httpx
import structlog

from facet.services.exceptions import MaterializationError, StorageError
from facet.services.storage.supabase_storage import BlobStore

logger = structlog.get_logger()

CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}
DEFAULT_EXTENSION = "png"


def extension_for(content_type: str | None) -> str:
    media_type = (content_type or "").split(";")[0].strip().lower()
    return CONTENT_TYPE_EXTENSIONS.get(media_type, DEFAULT_EXTENSION)


def result_path(job_id: UUID, extension: str) -> str:
    """Deterministic object key: repeated uploads for one job overwrite the same object."""
    return f"results/{job_id}.{extension}"


class ResultMaterializer:
    def __init__(
        self,
        store: BlobStore,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.timeout = timeout
        self.transport = transport

    async def _download(self, url: str) -> tuple[bytes, str | None]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport, follow_redirects=True
            ) as client:
                response = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise MaterializationError(f"Download failed: {e}")
        if not response.is_success:
            raise MaterializationError(f"Download failed ({response.status_code})")
        return response.content, response.headers.get("content-type")

    async def materialize(self, job_id: UUID, provider_url: str) -> str:
        """Copy a provider result into owned storage.

        Args:
            job_id: Job the result belongs to (names the stored object)
            provider_url: Provider-hosted result URL

        Returns:
            Owned public URL, or ``provider_url`` unchanged if anything failed
        """
        try:
            data, content_type = await self._download(provider_url)
            extension = extension_for(content_type)
            media_type = (content_type or f"image/{extension}").split(";")[0].strip()
            url = await self.store.upload(result_path(job_id, extension), data, media_type)
        except (MaterializationError, StorageError) as e:
            logger.warning(
                "materialize.failed", job_id=str(job_id), provider_url=provider_url, error=str(e)
            )
            return provider_url
        except Exception:
            logger.warning(
                "materialize.failed", job_id=str(job_id), provider_url=provider_url, exc_info=True
            )
            return provider_url

        logger.info("materialize.succeeded", job_id=str(job_id), url=url)
        return url
