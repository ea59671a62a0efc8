"""Per-destination locking between download workers and processes."""

import asyncio
import contextlib
import logging
import os
import secrets
import time
from pathlib import Path
from typing import AsyncIterator, Protocol

from ..errors import LockTimeoutError, StorageError

logger = logging.getLogger(__name__)


class DestinationLock(Protocol):
    def hold(self, destination: Path) -> "contextlib.AbstractAsyncContextManager[None]":
        ...


class ExclusiveCreateLock:
    """Lock implemented with an exclusively created ``<destination>.lock`` marker.

    Works on every platform and across processes. A marker older than
    ``stale_after`` seconds is treated as abandoned by a crashed holder.
    """

    def __init__(self, timeout: float = 120.0, stale_after: float = 300.0,
                 poll_interval: float = 0.05, max_poll_interval: float = 1.0):
        self.timeout = timeout
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval

    @staticmethod
    def marker_for(destination: Path) -> Path:
        return destination.with_name(destination.name + ".lock")

    def _try_create(self, marker: Path, token: str) -> bool:
        try:
            fd = os.open(marker, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        except OSError as e:
            raise StorageError(f"Cannot create lock {marker}: {e}") from e
        with os.fdopen(fd, 'w') as f:
            f.write(token)
        return True

    @staticmethod
    def _owned(marker: Path, token: str) -> bool:
        try:
            return marker.read_text() == token
        except OSError:
            return False

    def _reclaim_if_stale(self, marker: Path) -> None:
        try:
            age = time.time() - marker.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self.stale_after:
            logger.warning("Reclaiming stale lock %s (%.0fs old)", marker, age)
            with contextlib.suppress(FileNotFoundError):
                marker.unlink()

    async def _heartbeat(self, marker: Path, token: str) -> None:
        """Keep the marker fresh so long transfers are not reclaimed as stale."""
        while True:
            await asyncio.sleep(self.stale_after / 3)
            if not self._owned(marker, token):
                return
            with contextlib.suppress(OSError):
                os.utime(marker)

    @contextlib.asynccontextmanager
    async def hold(self, destination: Path) -> AsyncIterator[None]:
        marker = self.marker_for(destination)
        marker.parent.mkdir(parents=True, exist_ok=True)
        token = f"{os.getpid()}:{secrets.token_hex(8)}"
        deadline = time.monotonic() + self.timeout
        delay = self.poll_interval

        while not self._try_create(marker, token):
            self._reclaim_if_stale(marker)
            if time.monotonic() >= deadline:
                raise LockTimeoutError(f"Timed out waiting for lock on {destination}")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_poll_interval)

        heartbeat = asyncio.ensure_future(self._heartbeat(marker, token))
        try:
            yield
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            if self._owned(marker, token):
                with contextlib.suppress(FileNotFoundError):
                    marker.unlink()
            else:
                logger.warning("Lock %s was taken over by another holder", marker)
