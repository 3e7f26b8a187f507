"""Global constants and path configuration for crc."""

from __future__ import annotations

import os
from pathlib import Path

from crc.models import HostOS, Preset

# CRC_HOME relocates everything crc writes on the host (config, cache, VMs).
_CRC_HOME = os.environ.get("CRC_HOME")
if _CRC_HOME:
    CRC_BASE_DIR = Path(_CRC_HOME)
else:
    CRC_BASE_DIR = Path.home() / ".crc"
CONFIG_PATH = CRC_BASE_DIR / "crc.yaml"
ENV_PREFIX = "CRC"
BIN_DIR = CRC_BASE_DIR / "bin"
CACHE_DIR = CRC_BASE_DIR / "cache"
MACHINE_BASE_DIR = CRC_BASE_DIR / "machines"
MACHINE_INSTANCE_DIR = MACHINE_BASE_DIR / "crc"
LOGS_DIR = CRC_BASE_DIR
CRC_SYMLINK_PATH = BIN_DIR / "crc"
DAEMON_SOCKET_PATH = CRC_BASE_DIR / "crc-http.sock"

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off"}

_LOG_VERBOSE = os.environ.get("CRC_LOG_VERBOSE", "").lower() in TRUTHY

VERSION = "2.0.0"

ADMIN_HELPER_VERSION = "0.5.2"
ADMIN_HELPER_NAMES = {
    "linux": "crc-admin-helper-linux",
    "darwin": "crc-admin-helper-darwin",
    "windows": "crc-admin-helper-windows.exe",
}
ADMIN_HELPER_URL = "https://github.com/crc-org/admin-helper/releases/download/v{version}/{name}"

LIBVIRT_DRIVER_NAME = "crc-driver-libvirt"
LIBVIRT_DRIVER_VERSION = "0.13.7"
LIBVIRT_DRIVER_URL = (
    "https://github.com/crc-org/machine-driver-libvirt/releases/download/"
    "{version}/crc-driver-libvirt-{arch}"
)
VFKIT_VERSION = "0.5.1"
VFKIT_URL = "https://github.com/crc-org/vfkit/releases/download/v{version}/vfkit"

LIBVIRT_URI = os.environ.get("LIBVIRT_URI", "qemu:///system")
LIBVIRT_NETWORK_NAME = "crc"
LIBVIRT_BRIDGE_NAME = "crc"
LIBVIRT_NETWORK_UUID = "49eee855-d342-46c3-9ed3-b8d1758814cd"
LIBVIRT_NETWORK_MAC = "52:54:00:fd:be:d0"
DEFAULT_DOMAIN_NAME = "crc"
NODE_MAC = "52:fd:fc:07:21:82"
NODE_IP = "192.168.130.11"
GATEWAY_IP = "192.168.130.1"

DAEMON_SERVICE_NAME = "crc-daemon.service"
DAEMON_SOCKET_NAMES = ("crc-http.socket", "crc-vsock.socket")
DAEMON_LAUNCHD_LABEL = "crc.daemon"
DAEMON_TASK_NAME = "crcDaemon"
TRAY_LAUNCHD_LABEL = "crc.tray"
TRAY_APP_NAME = "Red Hat OpenShift Local.app"
TRAY_EXE_NAME = "tray-windows.exe"
TRAY_VERSION = "1.2.9"
TRAY_MAC_URL = "https://github.com/crc-org/tray-electron/releases/download/{version}/crc-tray-macos.tar.gz"
TRAY_WINDOWS_URL = "https://github.com/crc-org/tray-electron/releases/download/{version}/crc-tray-windows.zip"
TRAY_DIR = BIN_DIR / "tray"

# Supported architectures for the cluster VM; keys are normalized names.
SUPPORTED_ARCHES = {"x86_64", "aarch64"}
ARCH_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
}

DEFAULT_MEMORY = {
    Preset.OPENSHIFT: 10752,
    Preset.OKD: 10752,
    Preset.MICROSHIFT: 4096,
    Preset.PODMAN: 2048,
}
DEFAULT_CPUS = {
    Preset.OPENSHIFT: 4,
    Preset.OKD: 4,
    Preset.MICROSHIFT: 2,
    Preset.PODMAN: 2,
}
DEFAULT_DISK_SIZE = 31

BUNDLE_EXTENSION = ".crcbundle"
BUNDLE_VERSIONS = {
    Preset.OPENSHIFT: ("crc", "4.14.3"),
    Preset.OKD: ("crc_okd", "4.14.0"),
    Preset.MICROSHIFT: ("crc_microshift", "4.14.3"),
    Preset.PODMAN: ("crc_podman", "4.4.4"),
}
BUNDLE_DRIVERS = {
    HostOS.LINUX: "libvirt",
    HostOS.DARWIN: "vfkit",
    HostOS.WINDOWS: "hyperv",
}

MIN_WINDOWS_BUILD = 17134


def default_bundle_path(preset: Preset, host_os: HostOS) -> Path:
    prefix, version = BUNDLE_VERSIONS[preset]
    name = f"{prefix}_{BUNDLE_DRIVERS[host_os]}_{version}_amd64{BUNDLE_EXTENSION}"
    return CACHE_DIR / name


def default_memory(preset: Preset) -> int:
    return DEFAULT_MEMORY[preset]


def default_cpus(preset: Preset) -> int:
    return DEFAULT_CPUS[preset]
