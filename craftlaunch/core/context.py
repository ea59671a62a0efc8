"""Per-operation state shared by the launcher components."""

import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from ..config import LauncherConfig
from ..errors import OperationCancelledError

StageProgress = Callable[[str, int, int], Awaitable[None]]
# Receives a DownloadProgress for every file transfer
TransferProgress = Callable[[Any], Awaitable[None]]


class CancelToken:
    """Cooperative cancellation flag, settable from any thread."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled")


@dataclass
class LaunchContext:
    """Created once per install/prepare/launch call and passed down explicitly."""

    config: LauncherConfig = field(default_factory=LauncherConfig)
    cancel: CancelToken = field(default_factory=CancelToken)
    progress: Optional[StageProgress] = None
    transfer: Optional[TransferProgress] = None
    cache: Dict[str, Any] = field(default_factory=dict)

    async def report(self, stage: str, current: int, total: int):
        if self.progress:
            await self.progress(stage, current, total)
