"""Artifact downloader with atomic writes and an on-disk download cache."""

import os
import time
from pathlib import Path

import requests
from requests.adapters import HTTPAdapter
from tqdm import tqdm
from urllib3.util.retry import Retry

from hostdb.checksum import Verification, verify_checksum
from hostdb.config import RunContext, log_success
from hostdb.exceptions import ChecksumMismatch, DownloadError
from hostdb.models import DownloadableSource

CONNECT_TIMEOUT = 30
CHUNK_SIZE = 64 * 1024


class Fetcher:
    """Streams URLs to disk, never leaving a partial file at the final path."""

    def __init__(self, context: RunContext, timeout: float | None = None):
        """Initialize the fetcher.

        Args:
            context: Run context supplying settings and the logger
            timeout: Deadline for a whole download in seconds (default from settings)
        """
        self.logger = context.child("fetcher")
        self.timeout = timeout or context.settings.download_timeout
        self.session = self._create_session(context.settings.http_retries)

    def _create_session(self, retries: int) -> requests.Session:
        """Create a requests session.

        Retries only cover connection setup; failed downloads are retried by
        re-running the command.
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=retries,
            backoff_factor=1,
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def fetch(self, url: str, dest: str | Path, timeout: float | None = None) -> Path:
        """Download a URL to ``dest``.

        The body is written to ``<dest>.part`` and renamed onto ``dest`` only
        once the whole stream has been written.

        Args:
            url: URL to download from
            dest: Final path of the file
            timeout: Deadline for this download in seconds

        Returns:
            Path to the downloaded file

        Raises:
            DownloadError: On HTTP error status, network failure or timeout
        """
        dest = Path(dest)
        deadline_seconds = timeout or self.timeout
        part_path = dest.with_name(dest.name + ".part")
        dest.parent.mkdir(parents=True, exist_ok=True)

        self.logger.info(f"Downloading: {url}")
        started = time.monotonic()

        try:
            response = self.session.get(
                url,
                stream=True,
                timeout=(CONNECT_TIMEOUT, deadline_seconds),
                allow_redirects=True,
            )
            try:
                response.raise_for_status()
                downloaded = self._stream_to_file(
                    response, part_path, started + deadline_seconds, url
                )
            finally:
                response.close()

            os.replace(part_path, dest)

        except requests.RequestException as e:
            self.logger.error(f"Failed to download {url}: {e}")
            raise DownloadError(f"Download failed for {url}: {e}") from e
        except OSError as e:
            self.logger.error(f"Failed to write {dest}: {e}")
            raise DownloadError(f"Could not save {url} to {dest}: {e}") from e
        finally:
            part_path.unlink(missing_ok=True)

        duration = time.monotonic() - started
        log_success(
            self.logger,
            f"Downloaded {downloaded / 1024 / 1024:.1f}MB in {duration:.1f}s",
        )
        return dest

    def _stream_to_file(
        self, response: requests.Response, target: Path, deadline: float, url: str
    ) -> int:
        """Write the response body in chunks, reporting progress.

        Returns:
            Number of bytes written
        """
        total = int(response.headers.get("content-length") or 0)
        downloaded = 0

        progress = tqdm(
            total=total or None,
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            desc=target.name.removesuffix(".part"),
            disable=None,
        )
        with open(target, "wb") as f, progress:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise DownloadError(f"Download timed out: {url}")
                if chunk:  # Filter out keep-alive chunks
                    f.write(chunk)
                    downloaded += len(chunk)
                    progress.update(len(chunk))

        if total and downloaded != total:
            raise DownloadError(
                f"Incomplete download for {url}: got {downloaded} of {total} bytes"
            )
        return downloaded


class DownloadCache:
    """Original downloads kept under ``<output>/downloads/`` between runs."""

    def __init__(self, context: RunContext, fetcher: Fetcher):
        self.logger = context.child("cache")
        self.root = context.settings.downloads_dir
        self.fetcher = fetcher

    def path_for(self, *key: str, extension: str) -> Path:
        """Cache path for a key such as (database, version, platform, "original")."""
        return self.root / f"{'-'.join(key)}.{extension}"

    def obtain(self, url: str, *key: str, extension: str) -> Path:
        """Cached path for ``key``, downloading ``url`` into it on a miss."""
        path = self.path_for(*key, extension=extension)
        self.fetch_if_missing(url, path)
        return path

    def fetch_if_missing(self, url: str, path: Path) -> bool:
        """Download ``url`` to ``path`` unless it is already cached.

        Returns:
            True on a cache hit (no network access)
        """
        if path.exists():
            self.logger.info(f"Using cached download: {path.name}")
            return True
        self.fetcher.fetch(url, path)
        return False

    def verify(self, path: Path, source: DownloadableSource, label: str) -> Verification:
        """Verify a cached file, deleting it when it does not match.

        Raises:
            ChecksumMismatch: After the corrupt file has been removed
        """
        try:
            return verify_checksum(path, source.checksum, source.algorithm, label)
        except ChecksumMismatch:
            self.logger.warning(f"Removing corrupt download: {path}")
            path.unlink(missing_ok=True)
            raise
