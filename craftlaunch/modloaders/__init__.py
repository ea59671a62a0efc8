"""Mod loader support: Fabric/Quilt profiles and Forge/NeoForge installers."""

from .forge_installer import ForgeInstaller
from .modloader_manager import ModLoaderManager, SUPPORTED_LOADERS

__all__ = ["ForgeInstaller", "ModLoaderManager", "SUPPORTED_LOADERS"]
