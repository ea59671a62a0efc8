"""Version manifest and metadata manager."""

import aiohttp
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..core.context import LaunchContext
from ..errors import NetworkError, NotFoundError, StorageError
from ..utils.async_http import AsyncHTTPClient
from .download_manager import verify_file
from .models import (
    AssetIndexRef, ResolvedRuntime, VersionInfo, VersionLibrary, VersionListing, VersionManifest,
    VersionMetadata,
)

logger = logging.getLogger(__name__)


class VersionManager:
    MANIFEST_CACHE_KEY = "version_manifest"
    MAX_CHAIN_LENGTH = 10

    def __init__(self, context: LaunchContext, http: Optional[AsyncHTTPClient] = None):
        self.context = context
        self.config = context.config
        self.versions_dir = self.config.versions_dir
        self.http = http
        self._owns_http = http is None

    async def __aenter__(self):
        if self.http is None:
            timeout = aiohttp.ClientTimeout(sock_connect=self.config.connect_timeout,
                                            sock_read=self.config.read_timeout)
            self.http = await AsyncHTTPClient(timeout=timeout).__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._owns_http and self.http is not None:
            await self.http.__aexit__(exc_type, exc, tb)
            self.http = None

    async def fetch_manifest(self) -> VersionManifest:
        """Fetch the launcher version manifest, once per context."""
        cached = self.context.cache.get(self.MANIFEST_CACHE_KEY)
        if cached is not None:
            return cached

        logger.info("Fetching versions...")
        data = await self.http.get_json(self.config.manifest_url)
        manifest = VersionManifest(**data)
        self.context.cache[self.MANIFEST_CACHE_KEY] = manifest
        return manifest

    async def get_version_info(self, version_id: str, manifest: Optional[VersionManifest] = None) -> Optional[VersionInfo]:
        """Get version info for a specific version."""
        if not manifest:
            manifest = await self.fetch_manifest()

        for version in manifest.versions:
            if version.id == version_id:
                return version
        return None

    async def fetch_version_metadata(self, version_info: VersionInfo) -> Dict[str, Any]:
        """Fetch version.json for a catalog entry and store it as the local descriptor."""
        cache_path = self.descriptor_path(version_info.id)

        # Use the stored copy if it still matches the catalog
        if version_info.sha1 and verify_file(cache_path, sha1=version_info.sha1):
            raw = self.load_raw(version_info.id)
            if raw is not None:
                return raw

        # Stored byte for byte so the catalog SHA-1 keeps matching
        text = await self.http.get_text(version_info.url)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise NetworkError(f"Invalid version descriptor from {version_info.url}: {e}", version_info.url) from e
        self._write_text(cache_path, text)
        return data

    def descriptor_path(self, version_id: str) -> Path:
        return self.versions_dir / version_id / f"{version_id}.json"

    def load_raw(self, version_id: str) -> Optional[Dict[str, Any]]:
        path = self.descriptor_path(version_id)
        if not path.is_file():
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read version descriptor {path}: {e}") from e

    def load_descriptor(self, version_id: str) -> Optional[VersionMetadata]:
        raw = self.load_raw(version_id)
        if raw is None:
            return None
        try:
            return VersionMetadata.from_json(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Invalid version descriptor for {version_id}: {e}") from e

    def write_descriptor(self, version_id: str, data: Dict[str, Any]) -> Path:
        return self._write_text(self.descriptor_path(version_id), json.dumps(data, indent=2))

    @staticmethod
    def _write_text(path: Path, text: str) -> Path:
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, 'w', encoding='utf-8', newline='') as f:
                f.write(text)
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Cannot write version descriptor {path}: {e}") from e
        return path

    def resolve(self, version_id: str) -> ResolvedRuntime:
        """Flatten the inheritance chain of ``version_id``.

        Libraries and modern arguments are concatenated root first; main class,
        asset index and legacy arguments come from the closest node defining them.
        """
        chain: List[VersionMetadata] = []
        seen = set()
        current: Optional[str] = version_id

        while current is not None:
            if current in seen:
                raise StorageError(f"Inheritance cycle at {current} while resolving {version_id}")
            if len(chain) >= self.MAX_CHAIN_LENGTH:
                raise StorageError(f"Inheritance chain of {version_id} is longer than {self.MAX_CHAIN_LENGTH}")
            seen.add(current)

            descriptor = self.load_descriptor(current)
            if descriptor is None:
                if chain:
                    raise NotFoundError(f"Version {current} required by {chain[-1].id} is not installed")
                raise NotFoundError(f"Version {current} is not installed")
            chain.append(descriptor)
            current = descriptor.inheritsFrom

        root_first = list(reversed(chain))
        libraries: List[VersionLibrary] = []
        jvm_arguments = []
        game_arguments = []
        for node in root_first:
            libraries.extend(node.libraries)
            if node.arguments is not None:
                jvm_arguments.extend(node.arguments.jvm)
                game_arguments.extend(node.arguments.game)

        asset_index = next((node.assetIndex for node in chain if node.assetIndex), None)
        if asset_index is None:
            legacy_assets = next((node.assets for node in chain if node.assets), None)
            if legacy_assets:
                asset_index = AssetIndexRef(id=legacy_assets)

        binaries: List[str] = []
        for node in chain:
            jar_id = node.jar or node.id
            if jar_id not in binaries and (self.versions_dir / jar_id / f"{jar_id}.jar").is_file():
                binaries.append(jar_id)

        return ResolvedRuntime(
            version_id=version_id,
            chain=[node.id for node in chain],
            libraries=libraries,
            main_class=next((node.mainClass for node in chain if node.mainClass), None),
            asset_index=asset_index,
            jvm_arguments=jvm_arguments,
            game_arguments=game_arguments,
            legacy_arguments=next((node.minecraftArguments for node in chain if node.minecraftArguments), None),
            has_modern_arguments=any(node.arguments is not None for node in chain),
            binaries=binaries or [version_id],
            version_type=next((node.type for node in chain if node.type), None),
            launcher=chain[0].launcher,
        )

    def list_installed(self) -> List[str]:
        if not self.versions_dir.is_dir():
            return []
        return sorted(
            entry.name for entry in self.versions_dir.iterdir()
            if entry.is_dir() and (entry / f"{entry.name}.json").is_file()
        )

    def version_info(self, version_id: str) -> Dict[str, Any]:
        descriptor = self.load_descriptor(version_id)
        meta = descriptor.launcher if descriptor else None
        return {
            "id": version_id,
            "isModded": bool(meta and meta.modded),
            "loader": meta.loader if meta else None,
            "baseVersion": meta.baseVersion if meta else None,
        }

    async def list_all_versions(self) -> List[VersionListing]:
        """Catalog versions plus custom installed ones, newest first."""
        manifest = await self.fetch_manifest()
        installed = set(self.list_installed())
        release_map = {version.id: version for version in manifest.versions}

        combined = [
            VersionListing(id=version.id, type=version.type, releaseTime=version.releaseTime,
                           isInstalled=version.id in installed)
            for version in manifest.versions
        ]

        for version_id in sorted(installed - set(release_map)):
            descriptor = self.load_descriptor(version_id)
            meta = descriptor.launcher if descriptor else None
            base_version = (meta.baseVersion if meta else None) or (descriptor.inheritsFrom if descriptor else None)
            base_release = release_map.get(base_version) if base_version else None
            combined.append(VersionListing(
                id=version_id, type="custom",
                releaseTime=base_release.releaseTime if base_release else None,
                isInstalled=True, isCustom=True, baseVersion=base_version,
            ))

        epoch = datetime.fromtimestamp(0, timezone.utc)
        combined.sort(key=lambda v: v.id)
        combined.sort(key=lambda v: v.releaseTime or epoch, reverse=True)
        return combined
