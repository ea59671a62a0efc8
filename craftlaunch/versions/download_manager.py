"""Download engine with verification, locking and atomic replacement."""

import aiohttp
import aiofiles
import aiofiles.os
import asyncio
import contextlib
import enum
import hashlib
import logging
import secrets
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ..errors import NetworkError, NotFoundError, StorageError, VerificationError
from ..utils.filelock import DestinationLock, ExclusiveCreateLock

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
PROGRESS_INTERVAL = 0.25
MAX_REDIRECTS = 10


class FetchResult(enum.Enum):
    ALREADY_SATISFIED = "already_satisfied"
    FETCHED = "fetched"


@dataclass(frozen=True)
class DownloadJob:
    url: str
    destination: Path
    size: Optional[int] = None
    sha1: Optional[str] = None
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.destination.name


@dataclass(frozen=True)
class DownloadProgress:
    name: str
    downloaded: int
    total: Optional[int]
    rate: float


ProgressSink = Callable[[DownloadProgress], Awaitable[None]]


def _sha1_of(path: Path) -> str:
    hash_sha1 = hashlib.sha1()
    with open(path, 'rb') as f:
        while chunk := f.read(CHUNK_SIZE):
            hash_sha1.update(chunk)
    return hash_sha1.hexdigest()


def verify_file(path: Path, size: Optional[int] = None, sha1: Optional[str] = None) -> bool:
    """Check a local file against an expected size and SHA-1.

    A missing file fails verification. A directory in its place, or an
    unreadable file, raises ``StorageError``.
    """
    try:
        stat = path.stat()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageError(f"Cannot stat {path}: {e}") from e

    if path.is_dir():
        raise StorageError(f"Expected a file but found a directory: {path}")

    if size is not None and stat.st_size != size:
        return False
    if sha1:
        try:
            return _sha1_of(path) == sha1.lower()
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}") from e
    return True


class DownloadManager:
    """Fetches single files to their destination, at most once.

    The destination only ever holds a fully verified file: data is streamed to a
    private ``.part`` sibling and moved into place with one rename.
    """

    def __init__(self, lock: Optional[DestinationLock] = None,
                 timeout: Optional[aiohttp.ClientTimeout] = None):
        self.lock = lock or ExclusiveCreateLock()
        self.timeout = timeout or aiohttp.ClientTimeout(sock_connect=10, sock_read=30)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self.session:
            await self.session.close()

    @staticmethod
    async def verify(path: Path, size: Optional[int] = None, sha1: Optional[str] = None) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, verify_file, path, size, sha1)

    async def _remove_corrupt(self, path: Path) -> None:
        loop = asyncio.get_running_loop()
        if path.is_dir():
            logger.warning("Removing directory found in place of %s", path)
            await loop.run_in_executor(None, shutil.rmtree, path)
        elif path.exists():
            await aiofiles.os.remove(path)

    async def is_satisfied(self, job: DownloadJob) -> bool:
        """Whether the destination already verifies, healing a directory in its place."""
        try:
            return await self.verify(job.destination, job.size, job.sha1)
        except StorageError:
            if not job.destination.is_dir():
                raise
            await self._remove_corrupt(job.destination)
            return False

    def _clear_stale_parts(self, destination: Path) -> None:
        for stale in destination.parent.glob(destination.name + ".*.part"):
            logger.info("Removing stale partial download %s", stale)
            with contextlib.suppress(FileNotFoundError):
                stale.unlink()

    async def fetch(self, job: DownloadJob, progress: Optional[ProgressSink] = None) -> FetchResult:
        if await self.is_satisfied(job):
            return FetchResult.ALREADY_SATISFIED

        destination = job.destination
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create {destination.parent}: {e}") from e

        async with self.lock.hold(destination):
            # Another worker may have completed it while we waited.
            if await self.is_satisfied(job):
                return FetchResult.ALREADY_SATISFIED

            self._clear_stale_parts(destination)
            await self._remove_corrupt(destination)

            part = destination.with_name(f"{destination.name}.{secrets.token_hex(4)}.part")
            try:
                await self._stream(job, part, progress)
                if not await self.verify(part, job.size, job.sha1):
                    raise VerificationError(
                        f"Downloaded {job.label} does not match expected "
                        f"size={job.size} sha1={job.sha1}")
                await aiofiles.os.replace(part, destination)
            except OSError as e:
                raise StorageError(f"Cannot write {destination}: {e}") from e
            finally:
                with contextlib.suppress(FileNotFoundError):
                    part.unlink()

        logger.debug("Fetched %s", job.url)
        return FetchResult.FETCHED

    async def _stream(self, job: DownloadJob, part: Path, progress: Optional[ProgressSink]) -> None:
        if self.session is None:
            raise RuntimeError("DownloadManager must be used as an async context manager")

        try:
            async with self.session.get(job.url, allow_redirects=True, max_redirects=MAX_REDIRECTS) as resp:
                if resp.status == 404:
                    raise NotFoundError(f"Not found: {job.url}")
                if resp.status >= 400:
                    raise NetworkError(f"Failed to download {job.url} ({resp.status})", job.url, resp.status)

                total = resp.content_length or job.size
                downloaded = 0
                started = last_report = time.monotonic()
                reported_bytes = 0

                async with aiofiles.open(part, 'wb') as f:
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        await f.write(chunk)
                        downloaded += len(chunk)
                        now = time.monotonic()
                        if progress and now - last_report >= PROGRESS_INTERVAL:
                            rate = (downloaded - reported_bytes) / (now - last_report)
                            await progress(DownloadProgress(job.label, downloaded, total, rate))
                            last_report, reported_bytes = now, downloaded

                if progress:
                    elapsed = max(time.monotonic() - started, 1e-6)
                    await progress(DownloadProgress(job.label, downloaded, total, downloaded / elapsed))
        except aiohttp.TooManyRedirects as e:
            raise NetworkError(f"Too many redirects for {job.url}", job.url) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Failed to download {job.url}: {e}", job.url) from e
