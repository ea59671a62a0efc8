"""Version management module."""

from .manager import VersionManager
from .download_manager import DownloadJob, DownloadManager, FetchResult, verify_file
from .acquisition import ArtifactCoordinator
from .models import ResolvedRuntime, VersionManifest, VersionInfo, VersionMetadata

__all__ = [
    "ArtifactCoordinator", "DownloadJob", "DownloadManager", "FetchResult", "ResolvedRuntime",
    "VersionManager", "VersionManifest", "VersionInfo", "VersionMetadata", "verify_file",
]
