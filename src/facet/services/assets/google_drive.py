"""Google Drive v3 client for downloading source images."""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from facet.services.exceptions import AssetDownloadError

logger = structlog.get_logger()


@dataclass(frozen=True)
class AssetPayload:
    data: bytes
    content_type: str


class GoogleDriveClient:
    """Download file contents by Drive file id."""

    def __init__(
        self,
        access_token: str,
        api_base: str = "https://www.googleapis.com/drive/v3",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def download(self, file_id: str) -> AssetPayload:
        """Fetch raw file bytes.

        Args:
            file_id: Google Drive file id

        Returns:
            AssetPayload with bytes and content type

        Raises:
            AssetDownloadError: Network failure or non-2xx response
        """
        url = f"{self.api_base}/files/{file_id}"
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url, headers=headers, params={"alt": "media"})
        except httpx.TimeoutException as e:
            raise AssetDownloadError(f"Download timeout after {self.timeout}s: {e}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise AssetDownloadError(f"Download network error: {e}")

        if not response.is_success:
            raise AssetDownloadError(f"Failed to download from Google Drive ({response.status_code})")

        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        logger.debug("asset.downloaded", file_id=file_id, size=len(response.content))
        return AssetPayload(data=response.content, content_type=content_type)
