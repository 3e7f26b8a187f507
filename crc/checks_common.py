"""Preflight checks shared by every host OS, and by the unix-like ones."""

from __future__ import annotations

import os
import shutil
import stat
import sys
import tarfile
from functools import partial
from pathlib import Path
from typing import List

from crc.checks import CLEANUP_ONLY, NO_FIX, CatalogContext, Check
from crc.constants import (
    ADMIN_HELPER_NAMES,
    ADMIN_HELPER_URL,
    ADMIN_HELPER_VERSION,
    BIN_DIR,
    BUNDLE_EXTENSION,
    CACHE_DIR,
    CRC_SYMLINK_PATH,
    LOGS_DIR,
    MACHINE_INSTANCE_DIR,
    SUPPORTED_ARCHES,
    default_memory,
)
from crc.exceptions import CrcError
from crc.models import HostOS
from crc.runtime import detect_arch
from crc.utils import (
    download_file,
    ensure_directory,
    human_size,
    log,
    run_output,
    run_powershell,
    run_privileged,
    which,
)

# Generic checks


def check_supported_cpu_arch(host_os: HostOS) -> None:
    arch = detect_arch()
    log("DEBUG", f"Architecture is {arch}, host OS is {host_os.value}")
    # aarch64 hosts are only supported on macOS
    if arch in SUPPORTED_ARCHES and (arch == "x86_64" or host_os == HostOS.DARWIN):
        return
    raise CrcError("CRC can only run on AMD64/Intel64 CPUs and Apple silicon")


def _parse_memory(raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise CrcError(f"Failed to read total memory from '{raw.strip()}'") from None


def total_memory_bytes(host_os: HostOS) -> int:
    if host_os == HostOS.LINUX:
        with open("/proc/meminfo") as f:
            for line in f:
                if line.startswith("MemTotal:"):
                    return int(line.split()[1]) * 1024
        raise CrcError("Could not find MemTotal in /proc/meminfo")
    if host_os == HostOS.DARWIN:
        stdout, _ = run_output(["sysctl", "-n", "hw.memsize"])
        return _parse_memory(stdout)
    stdout, _ = run_powershell("(Get-CimInstance Win32_ComputerSystem).TotalPhysicalMemory")
    return _parse_memory(stdout)


def check_enough_memory(host_os: HostOS, required_mib: int) -> None:
    total = total_memory_bytes(host_os)
    required = required_mib * 1024 * 1024
    if total < required:
        raise CrcError(
            f"only {human_size(total)} of memory found ({human_size(required)} required)"
        )


def _extracted_bundle_dir(bundle: Path) -> Path:
    name = bundle.name
    if name.endswith(BUNDLE_EXTENSION):
        name = name[: -len(BUNDLE_EXTENSION)]
    return CACHE_DIR / name


def check_bundle_extracted(bundle: Path) -> None:
    log("DEBUG", f"Checking if {bundle} is extracted")
    if not _extracted_bundle_dir(bundle).is_dir():
        raise CrcError(f"bundle {bundle.name} is not extracted in {CACHE_DIR}")


def fix_bundle_extracted(bundle: Path) -> None:
    if not bundle.exists():
        raise CrcError(
            f"{bundle} not found, set its location with 'crc config set bundle <path>'"
        )
    ensure_directory(CACHE_DIR)
    log("INFO", f"Extracting bundle {bundle.name}")
    try:
        with tarfile.open(bundle, "r:*") as archive:
            archive.extractall(CACHE_DIR, filter="data")
    except tarfile.TarError as exc:
        raise CrcError(f"Failed to extract {bundle.name}: {exc}") from exc
    if not _extracted_bundle_dir(bundle).is_dir():
        raise CrcError(f"{bundle.name} does not contain a {_extracted_bundle_dir(bundle).name} directory")


def remove_machine_instance_dir() -> None:
    if MACHINE_INSTANCE_DIR.exists():
        shutil.rmtree(MACHINE_INSTANCE_DIR)


def remove_old_logs() -> None:
    for path in sorted(LOGS_DIR.glob("*.log.*")):
        log("DEBUG", f"Removing {path}")
        path.unlink(missing_ok=True)


def generic_checks(ctx: CatalogContext) -> List[Check]:
    memory = default_memory(ctx.preset)
    return [
        Check(
            identity="check-supported-cpu-arch",
            check_description="Checking if running on a supported CPU architecture",
            check=partial(check_supported_cpu_arch, ctx.os),
            fix_description="CRC is only supported on AMD64/Intel64 hardware",
            flags=NO_FIX,
        ),
        Check(
            identity="check-ram",
            check_description="Checking minimum RAM requirements",
            check=partial(check_enough_memory, ctx.os, memory),
            fix_description=f"crc requires at least {human_size(memory * 1024 * 1024)} to run",
            flags=NO_FIX,
        ),
        Check(
            identity="check-bundle-extracted",
            check_description="Checking if CRC bundle is extracted in '$HOME/.crc'",
            check=partial(check_bundle_extracted, ctx.bundle),
            fix_description="Extracting bundle from the CRC cache",
            fix=partial(fix_bundle_extracted, ctx.bundle),
        ),
        Check(
            cleanup_description="Removing CRC Machine Instance directory",
            cleanup=remove_machine_instance_dir,
            flags=CLEANUP_ONLY,
        ),
        Check(
            cleanup_description="Removing older logs",
            cleanup=remove_old_logs,
            flags=CLEANUP_ONLY,
        ),
    ]


# Admin helper: a small privileged executable used to edit the hosts file.


def admin_helper_path(host_os: HostOS) -> Path:
    return BIN_DIR / ADMIN_HELPER_NAMES[host_os.value]


def _check_admin_helper_version(path: Path) -> None:
    stdout, _ = run_output([str(path), "--version"])
    if ADMIN_HELPER_VERSION not in stdout:
        raise CrcError(
            f"unexpected version of the crc-admin-helper executable: {stdout.strip()} "
            f"(expected {ADMIN_HELPER_VERSION})"
        )


def check_suid(path: Path) -> None:
    st = path.stat()
    if not st.st_mode & stat.S_ISUID:
        raise CrcError(f"{path} does not have the SUID bit set ({stat.filemode(st.st_mode)})")
    if st.st_uid != 0:
        raise CrcError(f"{path} is not owned by root")


def set_suid(path: Path) -> None:
    log("DEBUG", f"Making {path} suid")
    run_privileged(f"Changing ownership of {path}", ["chown", "root", str(path)])
    # chown resets the suid bit, so chmod has to come second
    run_privileged(f"Setting suid for {path}", ["chmod", "u+s,g+x", str(path)])


def check_admin_helper_cached(host_os: HostOS) -> None:
    path = admin_helper_path(host_os)
    if not path.exists():
        raise CrcError("crc-admin-helper executable is not cached")
    _check_admin_helper_version(path)
    log("DEBUG", "crc-admin-helper executable already cached")
    if host_os != HostOS.WINDOWS:
        check_suid(path)


def fix_admin_helper_cached(host_os: HostOS) -> None:
    path = admin_helper_path(host_os)
    url = ADMIN_HELPER_URL.format(version=ADMIN_HELPER_VERSION, name=path.name)
    download_file(url, path, label="Downloading crc-admin-helper")
    if host_os != HostOS.WINDOWS:
        set_suid(path)


def remove_hosts_file_entries(host_os: HostOS) -> None:
    path = admin_helper_path(host_os)
    if not path.exists():
        return
    run_output([str(path), "clean"])


# Unix-only checks


def check_running_as_normal_user() -> None:
    if os.geteuid() != 0:
        return
    log("DEBUG", "Ran as root")
    raise CrcError("crc should not be run as root")


def runtime_executable_path() -> Path:
    found = which(sys.argv[0])
    # sys.argv[0] is not in $PATH when crc is started through a relative or absolute path
    return Path(found or sys.argv[0]).resolve()


def check_crc_symlink() -> None:
    runtime_path = runtime_executable_path()
    if not CRC_SYMLINK_PATH.is_symlink():
        raise CrcError(f"{CRC_SYMLINK_PATH} does not exist")
    target = CRC_SYMLINK_PATH.resolve()
    if target != runtime_path:
        raise CrcError(f"{CRC_SYMLINK_PATH} points to {target}, not to {runtime_path}")


def fix_crc_symlink() -> None:
    ensure_directory(CRC_SYMLINK_PATH.parent)
    if CRC_SYMLINK_PATH.is_symlink() or CRC_SYMLINK_PATH.exists():
        CRC_SYMLINK_PATH.unlink()
    runtime_path = runtime_executable_path()
    log("DEBUG", f"symlinking {runtime_path} to {CRC_SYMLINK_PATH}")
    CRC_SYMLINK_PATH.symlink_to(runtime_path)


def remove_crc_symlink() -> None:
    if CRC_SYMLINK_PATH.is_symlink():
        CRC_SYMLINK_PATH.unlink()


def unix_checks(ctx: CatalogContext) -> List[Check]:
    return [
        Check(
            identity="check-root-user",
            check_description="Checking if running as non-root",
            check=check_running_as_normal_user,
            fix_description="crc should not be run as root",
            flags=NO_FIX,
        ),
        Check(
            identity="check-admin-helper-cached",
            check_description="Checking if crc-admin-helper executable is cached",
            check=partial(check_admin_helper_cached, ctx.os),
            fix_description="Caching crc-admin-helper executable",
            fix=partial(fix_admin_helper_cached, ctx.os),
        ),
        Check(
            identity="check-crc-symlink",
            check_description="Checking if crc executable symlink exists",
            check=check_crc_symlink,
            fix_description="Creating symlink for crc executable",
            fix=fix_crc_symlink,
            cleanup_description="Removing crc executable symlink",
            cleanup=remove_crc_symlink,
        ),
        Check(
            cleanup_description="Removing hosts file records added by CRC",
            cleanup=partial(remove_hosts_file_entries, ctx.os),
            flags=CLEANUP_ONLY,
        ),
    ]
