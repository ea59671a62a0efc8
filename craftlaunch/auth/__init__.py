"""Authentication module for Minecraft accounts."""

from .offline import OfflineAuthenticator

__all__ = ["OfflineAuthenticator"]
