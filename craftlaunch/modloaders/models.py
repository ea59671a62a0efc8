"""Data models for mod loader metadata and installer profiles."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..versions.models import VersionLibrary


class DataSpec(BaseModel):
    client: Optional[str] = None
    server: Optional[str] = None


class ProcessorSpec(BaseModel):
    jar: str
    classpath: List[str] = []
    args: List[str] = []
    outputs: Optional[Dict[str, str]] = None
    sides: Optional[List[str]] = None

    def runs_on(self, side: str) -> bool:
        return not self.sides or side in self.sides


class InstallProfile(BaseModel):
    """install_profile.json of a Forge/NeoForge installer (spec 0 and 1)."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    spec: int = 0
    profile: Optional[str] = None
    version: Optional[str] = None
    minecraft: Optional[str] = None
    json_path: Optional[str] = Field(None, alias="json")
    path: Optional[str] = None
    data: Dict[str, DataSpec] = {}
    processors: List[ProcessorSpec] = []
    libraries: List[VersionLibrary] = []


class LoaderVersion(BaseModel):
    """A loader build as listed by the Fabric or Quilt meta servers."""

    loader: str
    installer: Optional[str] = None

    @classmethod
    def from_json(cls, entry: Dict[str, Any]) -> Optional["LoaderVersion"]:
        """Fabric lists ``{"loader": {"version"}}`` per game version, the
        plain loader list uses ``{"version"}``; both map to the same model."""
        loader = entry.get("loader")
        version = loader.get("version") if isinstance(loader, dict) else entry.get("version")
        if not version:
            return None
        installer = entry.get("installer")
        installer_version = installer.get("version") if isinstance(installer, dict) else None
        return cls(loader=version, installer=installer_version)
