"""Platform rule evaluation for libraries and arguments."""

import logging
import platform
import re
from typing import Dict, Iterable, Optional

from .models import VersionLibraryRules

logger = logging.getLogger(__name__)

# Name of the OS as used in version descriptors.
OS_NAMES = {
    "windows": "windows",
    "darwin": "osx",
    "linux": "linux",
}

# Name of the processor's architecture as used in version descriptors.
ARCH_NAMES = {
    "i386": "x86",
    "i686": "x86",
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm64": "arm64",
    "aarch64": "arm64",
}


def current_os() -> str:
    system = platform.system().lower()
    return OS_NAMES.get(system, system)


def current_arch() -> str:
    machine = platform.machine().lower()
    return ARCH_NAMES.get(machine, machine)


def current_os_version() -> str:
    """Host OS version in the form the Java ``os.version`` property reports."""
    system = platform.system()
    if system == "Darwin":
        return platform.mac_ver()[0] or platform.release()
    if system == "Windows":
        return platform.version()
    return platform.release()


def arch_bits() -> str:
    return "64" if platform.architecture()[0] == "64bit" else "32"


def _rule_matches(rule: VersionLibraryRules, os_name: str, arch: str, os_version: str,
                  features: Dict[str, bool]) -> bool:
    if rule.os is not None:
        if rule.os.name and rule.os.name != os_name:
            return False
        if rule.os.arch and rule.os.arch != arch:
            return False
        if rule.os.version:
            try:
                if not re.search(rule.os.version, os_version):
                    return False
            except re.error:
                logger.debug("Ignoring rule with invalid os.version pattern %r", rule.os.version)
                return False
    if rule.features:
        for name, expected in rule.features.items():
            if features.get(name, False) != expected:
                return False
    return True


def allowed(rules: Optional[Iterable[VersionLibraryRules]], os_name: Optional[str] = None,
            features: Optional[Dict[str, bool]] = None, arch: Optional[str] = None,
            os_version: Optional[str] = None) -> bool:
    """Evaluate ``rules`` for a platform.

    Every rule is visited and the last matching rule decides. Without any rule
    the item is allowed, with rules but no match it is disallowed.
    """
    if not rules:
        return True

    os_name = os_name or current_os()
    arch = arch or current_arch()
    os_version = current_os_version() if os_version is None else os_version
    features = features or {}

    allow = False
    for rule in rules:
        if _rule_matches(rule, os_name, arch, os_version, features):
            allow = rule.action == "allow"
    return allow
