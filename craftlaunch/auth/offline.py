"""Offline authentication for Minecraft."""

import hashlib
import re
import uuid
from typing import Dict, Any

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{1,16}$")


def offline_uuid(username: str) -> str:
    """Name-based UUID, the same one a vanilla server derives in offline mode.

    Java's ``UUID.nameUUIDFromBytes`` hashes the bare name bytes with no namespace.
    """
    digest = bytearray(hashlib.md5(f"OfflinePlayer:{username}".encode("utf-8")).digest())
    digest[6] = (digest[6] & 0x0F) | 0x30
    digest[8] = (digest[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(digest)))


class OfflineAuthenticator:
    """Offline mode authenticator with username only."""

    @staticmethod
    async def authenticate(username: str) -> Dict[str, Any]:
        """Authenticate offline with given username."""
        if not username or not USERNAME_RE.match(username):
            raise ValueError("Invalid username for offline mode")

        return {
            "id": offline_uuid(username),
            "name": username,
            "type": "offline",
            "access_token": "0"  # No token needed
        }

    @staticmethod
    def runtime_vars(profile: Dict[str, Any]) -> Dict[str, str]:
        """Map a profile to the ``auth_*`` argument variables."""
        return {
            "auth_player_name": profile["name"],
            "auth_uuid": profile["id"],
            "auth_access_token": profile["access_token"],
            "auth_session": profile["access_token"],
            "auth_xuid": "",
            "clientid": "",
            "user_type": "legacy",
        }
