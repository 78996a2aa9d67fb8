"""
Media Downloader - Fetch provider results and remote sources
"""

import os
import httpx
from typing import Optional
from pathlib import Path

from pydantic import BaseModel

from mediaforge.services.observability import logger


# Story stills and provider videos stay well under this
MAX_DOWNLOAD_BYTES = 512 * 1024 * 1024


class MediaDownloadError(Exception):
    """Download aborted before completion"""

    pass


class DownloadResult(BaseModel):
    path: str
    content_type: Optional[str] = None
    size_bytes: int


class MediaDownloader:
    """
    Download media from provider or user supplied URLs

    Bodies are always streamed to disk; the size cap is enforced while
    streaming.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_bytes: int = MAX_DOWNLOAD_BYTES,
    ):
        self.client = client or httpx.AsyncClient(timeout=300.0, follow_redirects=True)
        self.max_bytes = max_bytes

    async def download(self, url: str, target_path: str) -> DownloadResult:
        """
        Stream a URL to a local file

        A partial file is removed when the download fails.

        Returns:
            DownloadResult with the path, the response content type and the size

        Raises:
            httpx.HTTPError: On a transport error or non-2xx answer
            MediaDownloadError: If the body exceeds ``max_bytes``
        """
        logger.info("media_download_start", url=url, target_path=target_path)
        Path(target_path).parent.mkdir(parents=True, exist_ok=True)
        written = 0
        content_type = None

        try:
            async with self.client.stream("GET", url) as response:
                response.raise_for_status()
                content_type = response.headers.get("content-type")
                with open(target_path, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=65536):
                        written += len(chunk)
                        if written > self.max_bytes:
                            raise MediaDownloadError(
                                f"Download exceeds {self.max_bytes} bytes: {url}"
                            )
                        f.write(chunk)
        except Exception as e:
            logger.error("media_download_failed", url=url, error=str(e), bytes_written=written)
            if os.path.exists(target_path):
                os.remove(target_path)
            raise

        logger.info("media_download_complete", url=url, target_path=target_path, size_bytes=written)
        if content_type:
            content_type = content_type.split(";")[0].strip() or None
        return DownloadResult(path=target_path, content_type=content_type, size_bytes=written)

    async def download_to(self, url: str, target_path: str) -> str:
        """Stream a URL to ``target_path`` and return the path"""
        return (await self.download(url, target_path)).path

    async def close(self):
        await self.client.aclose()
