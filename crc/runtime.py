"""Host platform detection for crc."""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from crc.constants import ARCH_ALIASES
from crc.exceptions import CrcError
from crc.models import HostOS
from crc.utils import log

OS_RELEASE_PATHS = (Path("/etc/os-release"), Path("/usr/lib/os-release"))


@dataclass
class OsRelease:
    id: str = ""
    version_id: str = ""
    id_like: List[str] = field(default_factory=list)

    def is_like(self, distro: str) -> bool:
        return self.id == distro or distro in self.id_like

def detect_host_os() -> HostOS:
    """Map ``sys.platform`` to one of the supported host operating systems."""
    if sys.platform.startswith("linux"):
        return HostOS.LINUX
    if sys.platform == "darwin":
        return HostOS.DARWIN
    if sys.platform in ("win32", "cygwin"):
        return HostOS.WINDOWS
    raise CrcError(f"Unsupported host platform: {sys.platform}")


def detect_arch() -> str:
    machine = platform.machine().lower()
    return ARCH_ALIASES.get(machine, machine)


def parse_os_release(content: str) -> OsRelease:
    values: Dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"').strip("'")
    return OsRelease(
        id=values.get("ID", "").lower(),
        version_id=values.get("VERSION_ID", ""),
        id_like=values.get("ID_LIKE", "").lower().split(),
    )


def read_os_release() -> OsRelease:
    for path in OS_RELEASE_PATHS:
        try:
            return parse_os_release(path.read_text())
        except OSError:
            continue
    log("DEBUG", "No os-release file found")
    return OsRelease()
