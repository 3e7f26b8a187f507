"""macOS preflight checks: vfkit, DNS resolver file and launchd agents."""

from __future__ import annotations

import os
import plistlib
import shutil
import tarfile
from pathlib import Path
from typing import List

from crc.checks import CatalogContext, Check, PlatformChecks
from crc.checks_common import runtime_executable_path, unix_checks
from crc.constants import (
    BIN_DIR,
    CACHE_DIR,
    CRC_BASE_DIR,
    DAEMON_LAUNCHD_LABEL,
    TRAY_APP_NAME,
    TRAY_DIR,
    TRAY_LAUNCHD_LABEL,
    TRAY_MAC_URL,
    TRAY_VERSION,
    VFKIT_URL,
    VFKIT_VERSION,
)
from crc.exceptions import CrcError
from crc.labels import os_label
from crc.models import HostOS
from crc.utils import download_file, ensure_directory, log, remove_file_as_root, run, run_output, run_privileged

VFKIT_PATH = BIN_DIR / "vfkit"
RESOLVER_DIR = Path("/etc/resolver")
RESOLVER_FILE = RESOLVER_DIR / "testing"
LAUNCH_AGENTS_DIR = Path.home() / "Library" / "LaunchAgents"
TRAY_APP_PATH = TRAY_DIR / TRAY_APP_NAME


def check_vfkit_installed() -> None:
    if not VFKIT_PATH.exists():
        raise CrcError("vfkit executable is not cached")
    stdout, _ = run_output([str(VFKIT_PATH), "--version"])
    if VFKIT_VERSION not in stdout:
        raise CrcError(f"vfkit is out of date: {stdout.strip()} (expected {VFKIT_VERSION})")


def fix_vfkit_installed() -> None:
    download_file(VFKIT_URL.format(version=VFKIT_VERSION), VFKIT_PATH, label="Downloading vfkit")


def check_resolver_file_permissions() -> None:
    if not RESOLVER_FILE.exists():
        raise CrcError(f"{RESOLVER_FILE} does not exist")
    if RESOLVER_FILE.stat().st_uid != os.getuid():
        raise CrcError(f"{RESOLVER_FILE} is not owned by the current user")


def fix_resolver_file_permissions() -> None:
    run_privileged(f"Creating directory {RESOLVER_DIR}", ["mkdir", "-p", str(RESOLVER_DIR)])
    run_privileged(f"Creating file {RESOLVER_FILE}", ["touch", str(RESOLVER_FILE)])
    run_privileged(
        f"Changing ownership of {RESOLVER_FILE}",
        ["chown", str(os.getuid()), str(RESOLVER_FILE)],
    )


def remove_resolver_file() -> None:
    if RESOLVER_FILE.exists():
        remove_file_as_root(f"Removing file {RESOLVER_FILE}", RESOLVER_FILE)


# launchd user agents


def plist_path(label: str) -> Path:
    return LAUNCH_AGENTS_DIR / f"{label}.plist"


def agent_plist(label: str, arguments: List[str], log_name: str, keep_alive: bool = False) -> bytes:
    agent = {
        "Label": label,
        "ProgramArguments": arguments,
        "StandardOutPath": str(CRC_BASE_DIR / log_name),
        "Disabled": False,
    }
    if keep_alive:
        agent["KeepAlive"] = True
    else:
        agent["RunAtLoad"] = True
    return plistlib.dumps(agent)


def check_agent(label: str, expected: bytes) -> None:
    path = plist_path(label)
    if not path.exists():
        raise CrcError(f"launchd agent {label} is not installed")
    if path.read_bytes() != expected:
        raise CrcError(f"launchd agent {label} has an outdated configuration")


def install_agent(label: str, content: bytes) -> None:
    path = plist_path(label)
    ensure_directory(path.parent)
    if path.exists():
        run(["launchctl", "unload", str(path)], check=False, capture_output=True)
    path.write_bytes(content)
    run_output(["launchctl", "load", str(path)])


def remove_agent(label: str) -> None:
    path = plist_path(label)
    if not path.exists():
        return
    run(["launchctl", "unload", str(path)], check=False, capture_output=True)
    path.unlink()
    log("DEBUG", f"Removed launchd agent {label}")


def daemon_plist() -> bytes:
    return agent_plist(
        DAEMON_LAUNCHD_LABEL,
        [str(runtime_executable_path()), "daemon"],
        ".crcd-agent.log",
        keep_alive=True,
    )


def check_daemon_launchd_plist() -> None:
    check_agent(DAEMON_LAUNCHD_LABEL, daemon_plist())


def fix_daemon_launchd_plist() -> None:
    install_agent(DAEMON_LAUNCHD_LABEL, daemon_plist())


def remove_daemon_launchd_plist() -> None:
    remove_agent(DAEMON_LAUNCHD_LABEL)


# Tray (experimental)


def tray_plist() -> bytes:
    executable = TRAY_APP_PATH / "Contents" / "MacOS" / "Red Hat OpenShift Local"
    return agent_plist(TRAY_LAUNCHD_LABEL, [str(executable)], ".crct-agent.log")


def check_tray_installed() -> None:
    if not TRAY_APP_PATH.is_dir():
        raise CrcError(f"{TRAY_APP_NAME} is not installed in {TRAY_DIR}")


def fix_tray_installed() -> None:
    archive = CACHE_DIR / "crc-tray-macos.tar.gz"
    download_file(TRAY_MAC_URL.format(version=TRAY_VERSION), archive, label="Downloading tray", mode=0o644)
    if TRAY_APP_PATH.exists():
        shutil.rmtree(TRAY_APP_PATH)
    ensure_directory(TRAY_DIR)
    with tarfile.open(archive, "r:gz") as tar:
        tar.extractall(TRAY_DIR, filter="tar")
    archive.unlink()


def remove_tray() -> None:
    if TRAY_APP_PATH.exists():
        shutil.rmtree(TRAY_APP_PATH)


def check_tray_autostart() -> None:
    check_agent(TRAY_LAUNCHD_LABEL, tray_plist())


def fix_tray_autostart() -> None:
    install_agent(TRAY_LAUNCHD_LABEL, tray_plist())


def remove_tray_autostart() -> None:
    remove_agent(TRAY_LAUNCHD_LABEL)


def darwin_checks(ctx: CatalogContext) -> List[Check]:
    labels = os_label(HostOS.DARWIN)
    return [
        Check(
            identity="check-vfkit-installed",
            check_description="Checking if vfkit is installed",
            check=check_vfkit_installed,
            fix_description="Setting up virtualization with vfkit",
            fix=fix_vfkit_installed,
            labels=labels,
        ),
        Check(
            identity="check-resolver-file-permissions",
            check_description=f"Checking file permissions for {RESOLVER_FILE}",
            check=check_resolver_file_permissions,
            fix_description=f"Setting file permissions for {RESOLVER_FILE}",
            fix=fix_resolver_file_permissions,
            cleanup_description=f"Removing {RESOLVER_FILE} file",
            cleanup=remove_resolver_file,
            labels=labels,
        ),
        Check(
            identity="check-daemon-launchd-plist",
            check_description="Checking if crc daemon plist file is present and loaded",
            check=check_daemon_launchd_plist,
            fix_description="Adding crc daemon plist file and loading it",
            fix=fix_daemon_launchd_plist,
            cleanup_description="Unloading and removing the daemon plist file",
            cleanup=remove_daemon_launchd_plist,
            labels=labels,
        ),
    ]


def tray_checks(ctx: CatalogContext) -> List[Check]:
    labels = os_label(HostOS.DARWIN)
    return [
        Check(
            identity="check-tray-installed",
            check_description="Checking if tray is installed",
            check=check_tray_installed,
            fix_description="Installing tray",
            fix=fix_tray_installed,
            cleanup_description="Removing tray",
            cleanup=remove_tray,
            labels=labels,
        ),
        Check(
            identity="check-tray-autostart",
            check_description="Checking if tray is set to start at login",
            check=check_tray_autostart,
            fix_description="Setting tray to start at login",
            fix=fix_tray_autostart,
            cleanup_description="Removing tray from login items",
            cleanup=remove_tray_autostart,
            labels=labels,
        ),
    ]


class DarwinChecks(PlatformChecks):
    os = HostOS.DARWIN

    def checks(self, ctx: CatalogContext) -> List[Check]:
        return [*unix_checks(ctx), *darwin_checks(ctx)]

    def experimental_checks(self, ctx: CatalogContext) -> List[Check]:
        if not ctx.tray_autostart:
            return []
        return tray_checks(ctx)
