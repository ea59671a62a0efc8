"""Common utilities."""

from .async_http import AsyncHTTPClient
from .filelock import DestinationLock, ExclusiveCreateLock
from .logger import setup_logging
from .retry import RetryPolicy

__all__ = ["AsyncHTTPClient", "DestinationLock", "ExclusiveCreateLock", "RetryPolicy", "setup_logging"]
