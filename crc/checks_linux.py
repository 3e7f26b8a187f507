"""Linux preflight checks: virtualization, libvirt and the libvirt machine driver."""

from __future__ import annotations

import getpass
import re
from pathlib import Path
from typing import List

from crc.checks import CLEANUP_ONLY, NO_FIX, CatalogContext, Check, PlatformChecks
from crc.checks_common import unix_checks
from crc.checks_network_linux import network_checks
from crc.constants import BIN_DIR, LIBVIRT_DRIVER_NAME, LIBVIRT_DRIVER_URL, LIBVIRT_DRIVER_VERSION
from crc.exceptions import CrcError
from crc.labels import os_label
from crc.models import HostOS
from crc.network import libvirt_connection, lookup_domain
from crc.runtime import OsRelease, detect_arch, read_os_release
from crc.services import SystemdCommander
from crc.utils import download_file, kvm_available, log, run_output, run_privileged, which

CPUINFO_PATH = Path("/proc/cpuinfo")
LIBVIRT_GROUP = "libvirt"
LIBVIRT_DRIVER_PATH = BIN_DIR / LIBVIRT_DRIVER_NAME

# Package providing libvirtd with the KVM driver, per distribution family.
LIBVIRT_PACKAGES = {
    "fedora": ["dnf", "install", "-y", "libvirt-daemon-kvm"],
    "rhel": ["dnf", "install", "-y", "libvirt-daemon-kvm"],
    "debian": ["apt-get", "install", "-y", "libvirt-daemon-system"],
    "ubuntu": ["apt-get", "install", "-y", "libvirt-daemon-system"],
}


def check_virtualization_enabled() -> None:
    log("DEBUG", "Checking if the vmx/svm flags are present in /proc/cpuinfo")
    if detect_arch() != "x86_64":
        return
    cpuinfo = CPUINFO_PATH.read_text()
    if not re.search(r"\b(vmx|svm)\b", cpuinfo):
        raise CrcError("Virtualization is not available for your CPU")
    log("DEBUG", "CPU virtualization flags are good")


def check_kvm_enabled() -> None:
    if not kvm_available():
        raise CrcError("kvm kernel module is not loaded")
    log("DEBUG", "/dev/kvm is usable")


def fix_kvm_enabled() -> None:
    run_privileged("Loading the kvm kernel module", ["modprobe", "kvm"])


def check_libvirt_installed() -> None:
    if which("virsh") is None:
        raise CrcError("Libvirt cli virsh was not found in path")
    log("DEBUG", "'virsh' was found in PATH")


def install_command(release: OsRelease) -> List[str]:
    for distro, cmd in LIBVIRT_PACKAGES.items():
        if release.is_like(distro):
            return cmd
    raise CrcError(f"Cannot install libvirt automatically on '{release.id or 'unknown'}', please install it manually")


def fix_libvirt_installed() -> None:
    cmd = install_command(read_os_release())
    run_privileged("Installing virtualization packages", cmd)


def _user_groups(user: str) -> List[str]:
    stdout, _ = run_output(["id", "-Gn", user])
    return stdout.split()


def check_user_in_libvirt_group() -> None:
    user = getpass.getuser()
    if LIBVIRT_GROUP not in _user_groups(user):
        raise CrcError(f"{user} not part of {LIBVIRT_GROUP} group")
    log("DEBUG", f"Current user is already in the {LIBVIRT_GROUP} group")


def fix_user_in_libvirt_group() -> None:
    user = getpass.getuser()
    run_privileged(f"Adding user to the {LIBVIRT_GROUP} group", ["usermod", "-a", "-G", LIBVIRT_GROUP, user])


def libvirt_unit(systemd: SystemdCommander) -> str:
    # Modular libvirt daemons replace the monolithic libvirtd on recent distributions.
    if systemd.exists("virtqemud.socket"):
        return "virtqemud.socket"
    return "libvirtd.service"


def check_libvirt_running() -> None:
    systemd = SystemdCommander()
    unit = libvirt_unit(systemd)
    if not systemd.is_active(unit):
        raise CrcError(f"{unit} is not running")
    log("DEBUG", f"{unit} is running")


def fix_libvirt_running() -> None:
    systemd = SystemdCommander()
    unit = libvirt_unit(systemd)
    systemd.enable(unit)
    systemd.start(unit)


def check_libvirt_driver() -> None:
    if not LIBVIRT_DRIVER_PATH.exists():
        raise CrcError(f"{LIBVIRT_DRIVER_NAME} executable is not cached")
    stdout, _ = run_output([str(LIBVIRT_DRIVER_PATH), "version"])
    if LIBVIRT_DRIVER_VERSION not in stdout:
        raise CrcError(
            f"{LIBVIRT_DRIVER_NAME} is out of date: {stdout.strip()} (expected {LIBVIRT_DRIVER_VERSION})"
        )


def fix_libvirt_driver() -> None:
    url = LIBVIRT_DRIVER_URL.format(version=LIBVIRT_DRIVER_VERSION, arch=detect_arch())
    download_file(url, LIBVIRT_DRIVER_PATH, label=f"Downloading {LIBVIRT_DRIVER_NAME}")


def remove_crc_vm() -> None:
    if which("virsh") is None:
        log("DEBUG", "libvirt is not installed, no crc VM to remove")
        return
    with libvirt_connection() as conn:
        domain = lookup_domain(conn)
        if domain is None:
            return
        if domain.isActive():
            domain.destroy()
        domain.undefine()
    log("DEBUG", "crc VM removed")


def linux_checks(ctx: CatalogContext) -> List[Check]:
    labels = os_label(HostOS.LINUX)
    return [
        Check(
            identity="check-virt-enabled",
            check_description="Checking if Virtualization is enabled",
            check=check_virtualization_enabled,
            fix_description="You need to enable virtualization in BIOS",
            flags=NO_FIX,
            labels=labels,
        ),
        Check(
            identity="check-kvm-enabled",
            check_description="Checking if KVM is enabled",
            check=check_kvm_enabled,
            fix_description="Setting up KVM",
            fix=fix_kvm_enabled,
            labels=labels,
        ),
        Check(
            identity="check-libvirt-installed",
            check_description="Checking if libvirt is installed",
            check=check_libvirt_installed,
            fix_description="Installing libvirt service and dependencies",
            fix=fix_libvirt_installed,
            labels=labels,
        ),
        Check(
            identity="check-user-in-libvirt-group",
            check_description="Checking if user is part of libvirt group",
            check=check_user_in_libvirt_group,
            fix_description="Adding user to libvirt group",
            fix=fix_user_in_libvirt_group,
            labels=labels,
        ),
        Check(
            identity="check-libvirt-running",
            check_description="Checking if libvirt daemon is running",
            check=check_libvirt_running,
            fix_description="Starting libvirt service",
            fix=fix_libvirt_running,
            labels=labels,
        ),
        Check(
            identity="check-libvirt-driver",
            check_description="Checking if crc-driver-libvirt is installed",
            check=check_libvirt_driver,
            fix_description="Installing crc-driver-libvirt",
            fix=fix_libvirt_driver,
            labels=labels,
        ),
        Check(
            cleanup_description="Removing the crc VM if exists",
            cleanup=remove_crc_vm,
            flags=CLEANUP_ONLY,
            labels=labels,
        ),
    ]


class LinuxChecks(PlatformChecks):
    os = HostOS.LINUX

    def checks(self, ctx: CatalogContext) -> List[Check]:
        return [*unix_checks(ctx), *linux_checks(ctx)]

    def network_checks(self, ctx: CatalogContext) -> List[Check]:
        return network_checks(ctx)
