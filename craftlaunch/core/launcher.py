"""High level install, prepare and launch operations."""

import logging
import subprocess
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from ..auth import OfflineAuthenticator
from ..config import LauncherConfig
from ..errors import NotFoundError, StorageError
from ..modloaders.forge_installer import ForgeInstaller, is_valid_game_jar
from ..modloaders.modloader_manager import PATCH_LOADERS, SUPPORTED_LOADERS, ModLoaderManager
from ..runtime.java_manager import JavaManager
from ..utils.async_http import AsyncHTTPClient
from ..utils.filelock import ExclusiveCreateLock
from ..versions.acquisition import ArtifactCoordinator
from ..versions.download_manager import DownloadManager
from ..versions.manager import VersionManager
from ..versions.models import ResolvedRuntime, VersionListing, VersionMetadata
from .context import CancelToken, LaunchContext, StageProgress, TransferProgress
from .game_launcher import GameLauncher, LaunchCommand
from .layout import RuntimeLayout

logger = logging.getLogger(__name__)


@dataclass
class Services:
    context: LaunchContext
    versions: VersionManager
    coordinator: ArtifactCoordinator
    loaders: ModLoaderManager


class Launcher:
    """Entry point tying resolution, acquisition, patching and launching together."""

    def __init__(self, config: Optional[LauncherConfig] = None):
        self.config = config or LauncherConfig()
        self.java = JavaManager(self.config.java_path)

    def new_context(self, cancel: Optional[CancelToken] = None, progress: Optional[StageProgress] = None,
                    transfer: Optional[TransferProgress] = None) -> LaunchContext:
        return LaunchContext(config=self.config, cancel=cancel or CancelToken(), progress=progress,
                             transfer=transfer)

    def layout(self, version_id: str) -> RuntimeLayout:
        return RuntimeLayout(self.config.root_dir, version_id)

    @asynccontextmanager
    async def services(self, context: Optional[LaunchContext] = None):
        context = context or self.new_context()
        timeout = aiohttp.ClientTimeout(sock_connect=self.config.connect_timeout,
                                        sock_read=self.config.read_timeout)
        lock = ExclusiveCreateLock(timeout=self.config.lock_timeout,
                                   stale_after=self.config.lock_stale_after)
        async with AsyncHTTPClient(timeout=timeout) as http, \
                DownloadManager(lock=lock, timeout=timeout) as downloader:
            yield Services(
                context=context,
                versions=VersionManager(context, http),
                coordinator=ArtifactCoordinator(downloader, context),
                loaders=ModLoaderManager(context, http, downloader),
            )

    async def install_version(self, version_id: str, context: Optional[LaunchContext] = None) -> ResolvedRuntime:
        """Download a catalog version: descriptor, client jar, libraries, natives and assets."""
        async with self.services(context) as services:
            return await self._install(services, version_id)

    async def _install(self, services: Services, version_id: str) -> ResolvedRuntime:
        info = await services.versions.get_version_info(version_id)
        if info is None:
            raise NotFoundError(f"Version {version_id} not found in the version manifest")

        logger.info("Installing %s...", version_id)
        raw = await services.versions.fetch_version_metadata(info)
        metadata = VersionMetadata.from_json(raw)
        layout = self.layout(version_id).ensure()

        await services.coordinator.acquire_client(metadata, layout.jar_path)
        runtime = services.versions.resolve(version_id)
        await services.coordinator.acquire_libraries(runtime.libraries, layout.natives_dir)
        await services.coordinator.acquire_assets(runtime.asset_index)
        logger.info("Download complete.")
        return runtime

    async def create_modded_version(self, custom_name: str, base_version: str, loader: str,
                                    context: Optional[LaunchContext] = None) -> Dict[str, Any]:
        """Create ``custom_name`` inheriting from ``base_version`` with a mod loader on top."""
        loader = loader.lower()
        if loader not in SUPPORTED_LOADERS:
            raise ValueError(f"Unsupported loader: {loader}")
        layout = self.layout(custom_name)
        if layout.version_dir.exists():
            raise StorageError(f"Version {custom_name} already exists")

        async with self.services(context) as services:
            if await services.versions.get_version_info(base_version) is None:
                raise NotFoundError(f"Base version {base_version} not found in the version manifest")
            await self._install(services, base_version)

            logger.info("Creating %s profile...", loader)
            profile = await services.loaders.create_profile(loader, base_version)
            now = datetime.now(timezone.utc).isoformat()
            descriptor = dict(profile.descriptor)
            descriptor.update({
                "id": custom_name,
                "inheritsFrom": base_version,
                "jar": custom_name,
                "time": now,
                "releaseTime": now,
                "launcher": {
                    "modded": True,
                    "loader": loader,
                    "baseVersion": base_version,
                    "loaderVersion": profile.version,
                },
            })

            layout.ensure(modded=True)
            services.versions.write_descriptor(custom_name, descriptor)

            runtime = services.versions.resolve(custom_name)
            await services.coordinator.acquire_libraries(runtime.libraries, layout.natives_dir)
            await self._materialize(services, base_version, loader, profile.installer, layout)

        logger.info("Modded profile created.")
        return {"id": custom_name, "loader": loader, "baseVersion": base_version,
                "loaderVersion": profile.version}

    async def _materialize(self, services: Services, base_version: str, loader: str,
                           installer: Optional[Path], layout: RuntimeLayout) -> Path:
        java = str(self.java.find_java()) if installer is not None else None
        forge = ForgeInstaller(services.coordinator, services.context, java)
        if loader in PATCH_LOADERS:
            logger.info("Building %s client jar...", loader)
        return await forge.materialize_binary(base_version, installer, layout.jar_path)

    async def prepare(self, version_id: str, username: str,
                      context: Optional[LaunchContext] = None) -> LaunchCommand:
        """Make sure everything ``version_id`` needs is present and build its invocation."""
        profile = await OfflineAuthenticator.authenticate(username)

        async with self.services(context) as services:
            descriptor = services.versions.load_descriptor(version_id)
            if descriptor is None:
                raise NotFoundError(f"Version {version_id} is not installed")
            meta = descriptor.launcher
            modded = bool(meta and meta.modded)
            layout = self.layout(version_id).ensure(modded=modded)

            runtime = services.versions.resolve(version_id)
            if runtime.libraries:
                logger.info("Ensuring libraries...")
                await services.coordinator.acquire_libraries(runtime.libraries, layout.natives_dir)
            if runtime.asset_index and runtime.asset_index.url:
                logger.info("Ensuring assets...")
                await services.coordinator.acquire_assets(runtime.asset_index)

            if modded and meta.baseVersion and not is_valid_game_jar(layout.jar_path):
                installer = None
                if meta.loader in PATCH_LOADERS:
                    installer = services.loaders.find_installer(meta.loader, meta.loaderVersion)
                if installer is not None:
                    logger.info("Client jar of %s is missing, rerunning the installer", version_id)
                else:
                    logger.warning("Client jar of %s is missing, copying the %s jar", version_id,
                                   meta.baseVersion)
                await self._materialize(services, meta.baseVersion, meta.loader, installer, layout)
                runtime = services.versions.resolve(version_id)

        if not any((self.config.versions_dir / jar_id / f"{jar_id}.jar").is_file()
                   for jar_id in runtime.binaries):
            raise NotFoundError(f"Game jar for {version_id} not found. Install the base version first")

        runtime_vars = OfflineAuthenticator.runtime_vars(profile)
        runtime_vars["game_directory"] = str(layout.version_dir)
        produced = [layout.jar_path] if modded and layout.jar_path.is_file() else []
        return GameLauncher(self.config).build_invocation(runtime, runtime_vars, extra_binaries=produced)

    async def launch(self, version_id: str, username: str, java_path: Optional[Path] = None,
                     context: Optional[LaunchContext] = None) -> subprocess.Popen:
        java = self.java.find_java(java_path)
        logger.info("Using Java %s (%s)", self.java.get_java_version(java) or "unknown", java)
        command = await self.prepare(version_id, username, context)
        logger.info("Launching game...")
        return GameLauncher(self.config).launch_game(command, str(java))

    def uninstall(self, version_id: str) -> None:
        layout = self.layout(version_id)
        if not layout.version_dir.is_dir():
            raise NotFoundError(f"Version {version_id} is not installed")
        try:
            layout.remove()
        except OSError as e:
            raise StorageError(f"Cannot remove {version_id}: {e}") from e

    async def list_versions(self, context: Optional[LaunchContext] = None) -> List[VersionListing]:
        async with self.services(context) as services:
            return await services.versions.list_all_versions()

    def version_info(self, version_id: str) -> Dict[str, Any]:
        return VersionManager(self.new_context()).version_info(version_id)
