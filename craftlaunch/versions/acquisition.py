"""Turns resolved versions into download jobs and drives them to completion."""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.context import LaunchContext
from ..errors import LauncherError, NotFoundError, StorageError
from ..utils.retry import RetryPolicy
from .download_manager import DownloadJob, DownloadManager
from .maven import MavenCoordinate
from .models import AssetIndexRef, VersionLibrary, VersionMetadata
from .natives import extract_natives
from .rules import allowed, arch_bits, current_os

logger = logging.getLogger(__name__)

# Loader artifacts that are produced locally by the installer, never downloaded.
LOADER_ARTIFACTS = {
    ("net.minecraftforge", "forge"),
    ("net.neoforged", "neoforge"),
}


@dataclass(frozen=True)
class NativeBundle:
    job: DownloadJob
    exclude: Tuple[str, ...] = ()


def library_path(library: VersionLibrary, libraries_dir: Path) -> Optional[Path]:
    """Local path of a library's main artifact, from its descriptor or coordinate."""
    artifact = library.downloads.artifact if library.downloads else None
    if artifact and artifact.path:
        return libraries_dir / artifact.path
    try:
        return libraries_dir / MavenCoordinate.parse(library.name).path
    except ValueError:
        return None


def is_loader_produced(library: VersionLibrary) -> bool:
    """Whether the library is built by the installer rather than published upstream."""
    artifact = library.downloads.artifact if library.downloads else None
    if artifact is not None and artifact.url == "":
        return True
    try:
        coord = MavenCoordinate.parse(library.name)
    except ValueError:
        return False
    return (coord.group, coord.artifact) in LOADER_ARTIFACTS and coord.classifier == "client"


def asset_object_path(objects_dir: Path, sha1: str) -> Path:
    return objects_dir / sha1[:2] / sha1


def asset_object_url(resources_base_url: str, sha1: str) -> str:
    return f"{resources_base_url.rstrip('/')}/{sha1[:2]}/{sha1}"


class ArtifactCoordinator:
    """Plans and runs library, native and asset downloads for a version."""

    def __init__(self, downloader: DownloadManager, context: LaunchContext):
        self.downloader = downloader
        self.context = context
        self.config = context.config
        self.libraries_dir = self.config.libraries_dir

    def library_job(self, library: VersionLibrary) -> Optional[DownloadJob]:
        if is_loader_produced(library):
            logger.debug("Skipping installer-produced library %s", library.name)
            return None

        artifact = library.downloads.artifact if library.downloads else None
        if artifact and artifact.path:
            url = artifact.url or MavenCoordinate.parse(library.name).url(
                library.url or self.config.libraries_base_url)
            return DownloadJob(url, self.libraries_dir / artifact.path,
                               artifact.size, artifact.sha1, library.name)
        if library.natives:
            # Natives-only entries (pre-1.19 LWJGL) have no main artifact.
            return None

        try:
            coord = MavenCoordinate.parse(library.name)
        except ValueError:
            logger.warning("Ignoring library with invalid name %r", library.name)
            return None
        url = coord.url(library.url or self.config.libraries_base_url)
        return DownloadJob(url, self.libraries_dir / coord.path, name=library.name)

    def native_bundle(self, library: VersionLibrary, os_name: str) -> Optional[NativeBundle]:
        if not library.natives or os_name not in library.natives:
            return None
        classifier = library.natives[os_name].replace("${arch}", arch_bits())
        exclude = tuple(library.extract.exclude or ()) if library.extract else ()

        classifiers = library.downloads.classifiers if library.downloads else None
        native = classifiers.get(classifier) if classifiers else None
        if native and native.path and native.url:
            job = DownloadJob(native.url, self.libraries_dir / native.path,
                              native.size, native.sha1, f"{library.name}:{classifier}")
            return NativeBundle(job, exclude)

        coord = MavenCoordinate.parse(library.name).with_classifier(classifier)
        url = coord.url(library.url or self.config.libraries_base_url)
        return NativeBundle(DownloadJob(url, self.libraries_dir / coord.path, name=str(coord)), exclude)

    def plan_libraries(self, libraries: Iterable[VersionLibrary],
                       os_name: Optional[str] = None) -> Tuple[List[DownloadJob], List[NativeBundle]]:
        os_name = os_name or current_os()
        jobs: List[DownloadJob] = []
        natives: List[NativeBundle] = []
        for library in libraries:
            if not allowed(library.rules, os_name):
                continue
            job = self.library_job(library)
            if job is not None:
                jobs.append(job)
            bundle = self.native_bundle(library, os_name)
            if bundle is not None:
                natives.append(bundle)
        return jobs, natives

    async def acquire_libraries(self, libraries: Iterable[VersionLibrary],
                                natives_dir: Optional[Path] = None) -> None:
        """Download every applicable library and unpack natives into ``natives_dir``."""
        jobs, natives = self.plan_libraries(libraries)
        await self.run_jobs(jobs + [bundle.job for bundle in natives], "Downloading libraries")

        if natives and natives_dir is not None:
            await self._extract_all(natives, natives_dir)

    async def _extract_all(self, natives: List[NativeBundle], natives_dir: Path) -> None:
        loop = asyncio.get_running_loop()
        failures: List[StorageError] = []
        for bundle in natives:
            self.context.cancel.raise_if_cancelled()
            try:
                await loop.run_in_executor(None, extract_natives,
                                           bundle.job.destination, natives_dir, bundle.exclude)
            except StorageError as e:
                logger.error("%s", e)
                failures.append(e)
        if failures:
            raise failures[0]

    async def acquire_assets(self, asset_index: Optional[AssetIndexRef]) -> Optional[Path]:
        """Fetch the asset index once, then every object it lists."""
        if asset_index is None:
            return None

        index_path = self.config.assets_dir / "indexes" / f"{asset_index.id}.json"
        if asset_index.url:
            job = DownloadJob(asset_index.url, index_path, asset_index.size, asset_index.sha1,
                              f"{asset_index.id}.json")
            await self.downloader.fetch(job, self.context.transfer)
        elif not index_path.is_file():
            logger.warning("Asset index %s has no URL and is not present locally", asset_index.id)
            return None

        objects = await asyncio.get_running_loop().run_in_executor(None, self._read_index, index_path)
        jobs = [self.asset_job(info["hash"], info.get("size")) for info in objects.values()]
        await self.run_jobs(jobs, "Downloading assets")
        return index_path

    @staticmethod
    def _read_index(index_path: Path) -> Dict[str, dict]:
        try:
            with open(index_path, 'r', encoding='utf-8') as f:
                return json.load(f).get("objects", {})
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read asset index {index_path}: {e}") from e

    def asset_job(self, sha1: str, size: Optional[int] = None) -> DownloadJob:
        return DownloadJob(
            asset_object_url(self.config.resources_base_url, sha1),
            asset_object_path(self.config.assets_dir / "objects", sha1),
            size, sha1, sha1,
        )

    async def acquire_client(self, metadata: VersionMetadata, destination: Path) -> None:
        client = metadata.downloads.client if metadata.downloads else None
        if client is None or not client.url:
            raise NotFoundError(f"Client jar not found in version {metadata.id}")
        job = DownloadJob(client.url, destination, client.size, client.sha1, f"{metadata.id}.jar")
        await self.downloader.fetch(job, self.context.transfer)

    async def run_jobs(self, jobs: List[DownloadJob], stage: str) -> None:
        """Run jobs on a bounded worker pool; the call returns once every job is verified.

        The first failure stops workers from claiming new jobs and is raised once
        in-flight downloads settle. Cancellation is checked before each claim.
        """
        unique: Dict[Path, DownloadJob] = {}
        for job in jobs:
            unique.setdefault(job.destination, job)

        queue: asyncio.Queue = asyncio.Queue()
        for job in unique.values():
            queue.put_nowait(job)

        total = len(unique)
        completed = 0
        failures: List[LauncherError] = []
        cancel = self.context.cancel
        await self.context.report(stage, 0, total)

        async def worker():
            nonlocal completed
            while not failures and not cancel.cancelled:
                try:
                    job = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    await RetryPolicy.ARTIFACT.run(lambda: self.downloader.fetch(job, self.context.transfer),
                                                   f"download {job.label}")
                except LauncherError as e:
                    logger.error("Failed to download %s: %s", job.label, e)
                    failures.append(e)
                    return
                completed += 1
                await self.context.report(stage, completed, total)

        workers = [asyncio.create_task(worker())
                   for _ in range(min(self.config.concurrent_downloads, total))]
        try:
            await asyncio.gather(*workers)
        finally:
            for task in workers:
                task.cancel()

        cancel.raise_if_cancelled()
        if failures:
            raise failures[0]
