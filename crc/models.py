"""Data models for crc."""

from __future__ import annotations

from enum import Enum


class HostOS(str, Enum):
    DARWIN = "darwin"
    LINUX = "linux"
    WINDOWS = "windows"


class NetworkMode(str, Enum):
    USER = "user"
    SYSTEM = "system"

    @classmethod
    def parse(cls, raw: str) -> "NetworkMode":
        """Return the mode for ``raw``; anything unrecognized means system networking."""
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.SYSTEM


class Preset(str, Enum):
    OPENSHIFT = "openshift"
    OKD = "okd"
    MICROSHIFT = "microshift"
    PODMAN = "podman"

    @classmethod
    def parse(cls, raw: str) -> "Preset":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.OPENSHIFT
