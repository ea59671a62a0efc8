"""Mod loader manager."""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.context import LaunchContext
from ..errors import NetworkError, NotFoundError
from ..utils.async_http import AsyncHTTPClient
from ..versions.download_manager import DownloadJob, DownloadManager
from .forge_installer import read_installer_version_json
from .models import LoaderVersion

logger = logging.getLogger(__name__)

PROFILE_LOADERS = ("fabric", "quilt")
PATCH_LOADERS = ("forge", "neoforge")
SUPPORTED_LOADERS = PROFILE_LOADERS + PATCH_LOADERS

MAVEN_ARTIFACTS = {
    "forge": "net/minecraftforge/forge",
    "neoforge": "net/neoforged/neoforge",
}


@dataclass
class LoaderProfile:
    loader: str
    version: str
    descriptor: Dict[str, Any]
    installer: Optional[Path] = None


def loader_display_name(loader: str) -> str:
    return {"neoforge": "NeoForge"}.get(loader, loader.capitalize())


def neoforge_prefix(game_version: str) -> str:
    """NeoForge versions drop the leading ``1.``: game 1.20.4 maps to ``20.4.``."""
    parts = game_version.split(".")
    if len(parts) < 2 or parts[0] != "1":
        return f"{game_version}-"
    minor = parts[1]
    patch = parts[2] if len(parts) > 2 else "0"
    return f"{minor}.{patch}."


class ModLoaderManager:
    def __init__(self, context: LaunchContext, http: AsyncHTTPClient, downloader: DownloadManager):
        self.context = context
        self.config = context.config
        self.http = http
        self.downloader = downloader
        self.installers_dir = self.config.root_dir / "installers"

    def _meta_url(self, loader: str) -> str:
        if loader == "fabric":
            return self.config.fabric_meta_url.rstrip("/")
        if loader == "quilt":
            return self.config.quilt_meta_url.rstrip("/")
        raise ValueError(f"Unsupported profile loader: {loader}")

    def _maven_url(self, loader: str) -> str:
        base = self.config.forge_maven_url if loader == "forge" else self.config.neoforge_maven_url
        return f"{base.rstrip('/')}/{MAVEN_ARTIFACTS[loader]}"

    async def get_loader_versions(self, loader: str, game_version: str) -> List[LoaderVersion]:
        """Loader builds supporting ``game_version``, newest first."""
        data = await self.http.get_json(f"{self._meta_url(loader)}/versions/loader/{game_version}")
        if not isinstance(data, list):
            raise NetworkError(f"Unexpected {loader} loader list for {game_version}")
        versions = [LoaderVersion.from_json(entry) for entry in data if isinstance(entry, dict)]
        return [version for version in versions if version is not None]

    async def get_profile(self, loader: str, game_version: str,
                          latest: Optional[LoaderVersion] = None) -> Dict[str, Any]:
        """Fetch the launcher profile of a Fabric or Quilt loader, the newest one by default."""
        if latest is None:
            versions = await self.get_loader_versions(loader, game_version)
            if not versions:
                raise NotFoundError(f"{loader_display_name(loader)} does not support Minecraft {game_version}")
            latest = versions[0]

        installer = latest.installer
        if not installer:
            installers = await self.http.get_json(f"{self._meta_url(loader)}/versions/installer")
            installer = installers[0].get("version") if installers else None
        if not installer:
            raise NotFoundError(f"Failed to resolve {loader_display_name(loader)} installer version")

        base = f"{self._meta_url(loader)}/versions/loader/{game_version}/{latest.loader}"
        try:
            return await self.http.get_json(f"{base}/{installer}/profile/json")
        except (NotFoundError, NetworkError) as e:
            logger.warning("Installer-pinned profile unavailable (%s), trying the default profile", e)
            return await self.http.get_json(f"{base}/profile/json")

    async def get_maven_versions(self, loader: str) -> List[str]:
        text = await self.http.get_text(f"{self._maven_url(loader)}/maven-metadata.xml")
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise NetworkError(f"Invalid maven metadata for {loader}: {e}") from e
        return [node.text.strip() for node in root.findall("./versioning/versions/version") if node.text]

    async def get_latest_version(self, loader: str, game_version: str) -> Optional[str]:
        """Newest Forge or NeoForge build for a game version.

        NeoForge falls back to its newest release when nothing matches.
        """
        versions = await self.get_maven_versions(loader)
        prefix = f"{game_version}-" if loader == "forge" else neoforge_prefix(game_version)
        matching = [version for version in versions if version.startswith(prefix)]
        if matching:
            return matching[-1]
        if loader == "neoforge" and versions:
            logger.warning("No NeoForge build matches Minecraft %s, using the newest build %s",
                           game_version, versions[-1])
            return versions[-1]
        return None

    def installer_url(self, loader: str, version: str) -> str:
        artifact = MAVEN_ARTIFACTS[loader].rsplit("/", 1)[-1]
        return f"{self._maven_url(loader)}/{version}/{artifact}-{version}-installer.jar"

    def installer_path(self, loader: str, version: str) -> Path:
        return self.installers_dir / f"{loader}-{version}-installer.jar"

    async def download_installer(self, loader: str, version: str) -> Path:
        destination = self.installer_path(loader, version)
        logger.info("Downloading %s installer %s...", loader_display_name(loader), version)
        job = DownloadJob(self.installer_url(loader, version), destination, name=destination.name)
        await self.downloader.fetch(job, self.context.transfer)
        return destination

    async def create_profile(self, loader: str, game_version: str) -> LoaderProfile:
        """Fetch the newest loader build for a game version as a version descriptor."""
        if loader in PROFILE_LOADERS:
            versions = await self.get_loader_versions(loader, game_version)
            if not versions:
                raise NotFoundError(f"{loader_display_name(loader)} does not support Minecraft {game_version}")
            descriptor = await self.get_profile(loader, game_version, versions[0])
            return LoaderProfile(loader, versions[0].loader, descriptor)
        if loader in PATCH_LOADERS:
            version = await self.get_latest_version(loader, game_version)
            if not version:
                raise NotFoundError(f"No {loader_display_name(loader)} versions found for {game_version}")
            installer = await self.download_installer(loader, version)
            return LoaderProfile(loader, version, read_installer_version_json(installer), installer)
        raise ValueError(f"Unsupported loader: {loader}")

    def find_installer(self, loader: str, loader_version: Optional[str]) -> Optional[Path]:
        """A cached installer for a previously created patch-loader version."""
        if not loader_version:
            return None
        path = self.installer_path(loader, loader_version)
        return path if path.is_file() else None
