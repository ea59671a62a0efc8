"""Data models for Minecraft versions."""

from pydantic import BaseModel, ConfigDict
from typing import Dict, List, Optional, Any, Union
from datetime import datetime


class VersionDownload(BaseModel):
    url: Optional[str] = None
    sha1: Optional[str] = None
    size: Optional[int] = None


class VersionDownloads(BaseModel):
    client: Optional[VersionDownload] = None
    server: Optional[VersionDownload] = None


class VersionLibraryExtractor(BaseModel):
    exclude: Optional[List[str]] = None


class VersionLibraryArtifact(BaseModel):
    path: Optional[str] = None
    sha1: Optional[str] = None
    size: Optional[int] = None
    url: Optional[str] = None


class VersionLibraryDownloads(BaseModel):
    artifact: Optional[VersionLibraryArtifact] = None
    classifiers: Optional[Dict[str, VersionLibraryArtifact]] = None


class VersionLibraryRulesOs(BaseModel):
    name: Optional[str] = None
    version: Optional[str] = None
    arch: Optional[str] = None


class VersionLibraryRules(BaseModel):
    action: str
    os: Optional[VersionLibraryRulesOs] = None
    features: Optional[Dict[str, bool]] = None


class VersionLibrary(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    url: Optional[str] = None
    downloads: Optional[VersionLibraryDownloads] = None
    rules: Optional[List[VersionLibraryRules]] = None
    extract: Optional[VersionLibraryExtractor] = None
    natives: Optional[Dict[str, str]] = None


class ConditionalArgument(BaseModel):
    rules: Optional[List[VersionLibraryRules]] = None
    value: Union[str, List[str]]

    @property
    def values(self) -> List[str]:
        return [self.value] if isinstance(self.value, str) else list(self.value)


ArgumentToken = Union[str, ConditionalArgument]


class VersionArguments(BaseModel):
    game: List[ArgumentToken] = []
    jvm: List[ArgumentToken] = []


class AssetIndexRef(BaseModel):
    id: str
    sha1: Optional[str] = None
    size: Optional[int] = None
    totalSize: Optional[int] = None
    url: Optional[str] = None


class LauncherMetadata(BaseModel):
    """Bookkeeping written into descriptors of launcher-created versions."""
    model_config = ConfigDict(extra="allow")

    modded: bool = False
    loader: Optional[str] = None
    baseVersion: Optional[str] = None
    loaderVersion: Optional[str] = None


class VersionInfo(BaseModel):
    id: str
    type: str
    url: str
    time: datetime
    releaseTime: datetime
    sha1: Optional[str] = None
    complianceLevel: int = 0


class VersionManifest(BaseModel):
    latest: Dict[str, str]
    versions: List[VersionInfo]


class VersionMetadata(BaseModel):
    """Parsed version.json data - flexible for all versions"""
    model_config = ConfigDict(extra="allow")

    id: str
    inheritsFrom: Optional[str] = None
    type: Optional[str] = None
    time: Optional[datetime] = None
    releaseTime: Optional[datetime] = None
    minimumLauncherVersion: Optional[int] = None
    downloads: Optional[VersionDownloads] = None
    assetIndex: Optional[AssetIndexRef] = None
    assets: Optional[str] = None
    arguments: Optional[VersionArguments] = None
    minecraftArguments: Optional[str] = None
    libraries: List[VersionLibrary] = []
    mainClass: Optional[str] = None
    jar: Optional[str] = None
    launcher: Optional[LauncherMetadata] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VersionMetadata":
        """Normalize the descriptor shapes seen upstream into one model.

        Legacy Forge installer profiles nest the version under ``versionInfo``.
        """
        if "versionInfo" in data and "id" not in data:
            data = data["versionInfo"]
        return cls(**data)


class ResolvedRuntime(BaseModel):
    """A version chain flattened into what a launch needs."""

    version_id: str
    chain: List[str]
    libraries: List[VersionLibrary] = []
    main_class: Optional[str] = None
    asset_index: Optional[AssetIndexRef] = None
    jvm_arguments: List[ArgumentToken] = []
    game_arguments: List[ArgumentToken] = []
    legacy_arguments: Optional[str] = None
    has_modern_arguments: bool = False
    binaries: List[str] = []
    version_type: Optional[str] = None
    launcher: Optional[LauncherMetadata] = None


class VersionListing(BaseModel):
    """One row of the combined catalog + installed versions listing."""

    id: str
    type: str
    releaseTime: Optional[datetime] = None
    isInstalled: bool = False
    isCustom: bool = False
    baseVersion: Optional[str] = None
