"""Download service for the update archive."""

from pathlib import Path
import logging

import httpx
import aiofiles

from domain_tracker.models.errors import UpdateError

USER_AGENT = "DomainTracker-Updater"


class DownloadService:
    """Streams the remote zip archive to a local file."""

    def __init__(self, timeout: float = 60.0):
        """Initialize download service.

        Args:
            timeout: Request timeout in seconds
        """
        self.logger = logging.getLogger("domain_tracker.download")
        self.timeout = timeout
        self.chunk_size = 64 * 1024  # 64KB chunks

    async def download_archive(self, url: str, target_path: Path) -> Path:
        """Download ``url`` to ``target_path``.

        Args:
            url: HTTPS URL of the zip archive
            target_path: Destination file (parent must exist)

        Returns:
            Path to the downloaded file

        Raises:
            UpdateError: If the request fails or the file cannot be written
        """
        self.logger.info(f"Starting download: url={url}")
        bytes_downloaded = 0

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()

                    async with aiofiles.open(target_path, "wb") as f:
                        async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                            await f.write(chunk)
                            bytes_downloaded += len(chunk)
        except (httpx.HTTPError, OSError) as e:
            self.logger.error(f"Download failed: {e}", exc_info=True)
            target_path.unlink(missing_ok=True)
            raise UpdateError(f"Download failed: {e}") from e

        self.logger.info(f"Downloaded {bytes_downloaded} bytes")
        return target_path
