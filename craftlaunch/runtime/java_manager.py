"""Java runtime lookup for Minecraft."""

import logging
import os
import platform
import re
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from ..errors import NotFoundError

logger = logging.getLogger(__name__)


def java_executable_name() -> str:
    return "java.exe" if platform.system() == "Windows" else "java"


class JavaManager:
    def __init__(self, preferred: Optional[Path] = None):
        self.preferred = preferred

    def find_java(self, preferred: Optional[Path] = None) -> Path:
        """Find a Java executable.

        Lookup order is the explicit path, the configured path, ``JAVA_HOME``
        and finally ``PATH``.
        """
        for candidate in (preferred, self.preferred):
            if candidate is None:
                continue
            candidate = Path(candidate)
            if candidate.is_dir():
                candidate = candidate / "bin" / java_executable_name()
            if candidate.is_file():
                return candidate
            logger.warning("Configured Java %s does not exist", candidate)

        java_home = os.environ.get("JAVA_HOME")
        if java_home:
            java_bin = Path(java_home) / "bin" / java_executable_name()
            if java_bin.is_file():
                return java_bin

        found = shutil.which("java")
        if found:
            return Path(found)

        raise NotFoundError("Java not found. Install Java or set java_path in the launcher config")

    def get_java_version(self, java_path: Path) -> Optional[int]:
        """Major version of a Java executable (8 for ``1.8.0_392``), or None."""
        try:
            result = subprocess.run([str(java_path), "-version"], capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Cannot run %s: %s", java_path, e)
            return None

        # version is on stderr
        match = re.search(r'version "([^"]+)"', result.stderr or result.stdout)
        if not match:
            return None
        parts = match.group(1).split(".")
        try:
            major = int(parts[0])
            if major == 1 and len(parts) > 1:
                major = int(parts[1])
        except ValueError:
            return None
        return major
