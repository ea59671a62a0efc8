"""On-disk layout of the launcher root and of each installed version."""

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from ..errors import StorageError

logger = logging.getLogger(__name__)

VERSION_SUBDIRS = (
    "natives", "config", "data", "logs", "resourcepacks", "saves",
    "screenshots", "server-resource-packs", "shaderpacks",
)
VERSION_FILES = ("options.txt", "servers.dat", "command_history.txt")
METADATA_FILENAME = "launcher-metadata.json"


class RuntimeLayout:
    """Paths for one version; the library and asset stores are shared by all versions."""

    def __init__(self, root_dir: Path, version_id: str):
        self.root_dir = root_dir
        self.version_id = version_id
        self.libraries_dir = root_dir / "libraries"
        self.assets_dir = root_dir / "assets"
        self.asset_indexes_dir = self.assets_dir / "indexes"
        self.asset_objects_dir = self.assets_dir / "objects"
        self.versions_dir = root_dir / "versions"
        self.installers_dir = root_dir / "installers"
        self.version_dir = self.versions_dir / version_id
        self.natives_dir = self.version_dir / "natives"
        self.mods_dir = self.version_dir / "mods"
        self.metadata_path = self.version_dir / METADATA_FILENAME

    @property
    def descriptor_path(self) -> Path:
        return self.version_dir / f"{self.version_id}.json"

    @property
    def jar_path(self) -> Path:
        return self.version_dir / f"{self.version_id}.jar"

    def ensure(self, modded: bool = False) -> "RuntimeLayout":
        """Create the shared stores and this version's directories if missing."""
        try:
            for path in (self.libraries_dir, self.asset_indexes_dir, self.asset_objects_dir):
                path.mkdir(parents=True, exist_ok=True)
            for name in VERSION_SUBDIRS:
                (self.version_dir / name).mkdir(parents=True, exist_ok=True)
            if modded:
                self.mods_dir.mkdir(exist_ok=True)
            for name in VERSION_FILES:
                (self.version_dir / name).touch(exist_ok=True)
            if not self.metadata_path.exists():
                with open(self.metadata_path, 'w', encoding='utf-8') as f:
                    json.dump({
                        "versionId": self.version_id,
                        "isModded": modded,
                        "createdAt": datetime.now(timezone.utc).isoformat(),
                    }, f, indent=2)
        except OSError as e:
            raise StorageError(f"Cannot create layout for {self.version_id}: {e}") from e
        return self

    def remove(self):
        """Delete this version's directory. Shared stores are left alone."""
        if self.version_dir.is_dir():
            logger.info("Removing version directory %s", self.version_dir)
            shutil.rmtree(self.version_dir)
