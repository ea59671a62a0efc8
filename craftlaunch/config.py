"""Launcher configuration."""

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from .errors import StorageError

CONFIG_ENV = "CRAFTLAUNCH_CONFIG"
CONFIG_FILENAME = "launcher_config.json"


class LauncherConfig(BaseModel):
    root_dir: Path = Path.home() / ".minecraft"
    concurrent_downloads: int = 8
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    lock_timeout: float = 120.0
    lock_stale_after: float = 300.0
    max_memory: Optional[str] = "2G"
    min_memory: Optional[str] = "1G"
    java_path: Optional[Path] = None
    launcher_name: str = "craftlaunch"
    launcher_version: str = "0.3.0"
    manifest_url: str = "https://piston-meta.mojang.com/mc/game/version_manifest_v2.json"
    libraries_base_url: str = "https://libraries.minecraft.net/"
    resources_base_url: str = "https://resources.download.minecraft.net/"
    fabric_meta_url: str = "https://meta.fabricmc.net/v2"
    quilt_meta_url: str = "https://meta.quiltmc.org/v3"
    forge_maven_url: str = "https://maven.minecraftforge.net/"
    neoforge_maven_url: str = "https://maven.neoforged.net/releases/"

    @property
    def versions_dir(self) -> Path:
        return self.root_dir / "versions"

    @property
    def libraries_dir(self) -> Path:
        return self.root_dir / "libraries"

    @property
    def assets_dir(self) -> Path:
        return self.root_dir / "assets"


def load_config(path: Optional[Path] = None) -> LauncherConfig:
    """Load configuration from JSON.

    Lookup order is the explicit path, then ``$CRAFTLAUNCH_CONFIG``, then
    ``launcher_config.json`` inside the default root. A missing file yields defaults.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV)
        path = Path(env_path) if env_path else LauncherConfig().root_dir / CONFIG_FILENAME

    if not path.is_file():
        return LauncherConfig()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return LauncherConfig(**data)
    except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
        raise StorageError(f"Invalid launcher config {path}: {e}") from e
