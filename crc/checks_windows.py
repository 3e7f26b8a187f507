"""Windows preflight checks: Hyper-V, user groups, the daemon task and the tray."""

from __future__ import annotations

import getpass
import shutil
import zipfile
from functools import partial
from typing import List
from xml.sax.saxutils import escape

from crc.checks import CLEANUP_ONLY, NO_FIX, CatalogContext, Check, PlatformChecks
from crc.checks_common import (
    check_admin_helper_cached,
    fix_admin_helper_cached,
    remove_hosts_file_entries,
    runtime_executable_path,
)
from crc.constants import (
    CACHE_DIR,
    DAEMON_TASK_NAME,
    DEFAULT_DOMAIN_NAME,
    MIN_WINDOWS_BUILD,
    TRAY_DIR,
    TRAY_EXE_NAME,
    TRAY_VERSION,
    TRAY_WINDOWS_URL,
    VERSION,
)
from crc.exceptions import CrcError
from crc.labels import mode_label, os_label
from crc.models import HostOS, NetworkMode
from crc.utils import download_file, ensure_directory, log, run_powershell

CRC_USERS_GROUP = "crc-users"
HYPERV_ADMINS_SID = "S-1-5-32-578"
HYPERV_SERVICE = "vmms"
DEFAULT_SWITCH = "Default Switch"
VSOCK_REGISTRY_KEY = (
    r"HKLM:\SOFTWARE\Microsoft\Windows NT\CurrentVersion\Virtualization"
    r"\GuestCommunicationServices\00000400-FACB-11E6-BD58-64006A7986D3"
)
RUN_REGISTRY_KEY = r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Run"
TRAY_RUN_VALUE = "crc-tray"

DAEMON_TASK_TEMPLATE = """<?xml version="1.0" encoding="UTF-16"?>
<Task version="1.3" xmlns="http://schemas.microsoft.com/windows/2004/02/mit/task">
  <RegistrationInfo>
    <Description>Run crc daemon as a task</Description>
    <Version>{version}</Version>
  </RegistrationInfo>
  <Settings>
    <DisallowStartIfOnBatteries>false</DisallowStartIfOnBatteries>
    <StopIfGoingOnBatteries>false</StopIfGoingOnBatteries>
    <Hidden>true</Hidden>
    <MultipleInstancesPolicy>IgnoreNew</MultipleInstancesPolicy>
    <ExecutionTimeLimit>PT0S</ExecutionTimeLimit>
  </Settings>
  <Triggers>
    <LogonTrigger>
      <UserId>{user}</UserId>
    </LogonTrigger>
  </Triggers>
  <Actions Context="Author">
    <Exec>
      <Command>{command}</Command>
      <Arguments>daemon</Arguments>
    </Exec>
  </Actions>
</Task>
"""


def quote(value: str) -> str:
    """Single-quote a string for PowerShell."""
    return "'" + value.replace("'", "''") + "'"


def powershell_succeeds(script: str) -> bool:
    try:
        run_powershell(script)
    except CrcError as exc:
        log("DEBUG", str(exc))
        return False
    return True


def powershell_value(script: str) -> str:
    stdout, _ = run_powershell(script)
    return stdout.strip()


def check_administrator_user() -> None:
    is_admin = powershell_value(
        "([Security.Principal.WindowsPrincipal][Security.Principal.WindowsIdentity]::GetCurrent())"
        ".IsInRole([Security.Principal.WindowsBuiltInRole]::Administrator)"
    )
    if is_admin == "True":
        raise CrcError("crc should be ran in a shell without administrator rights")


def check_windows_version() -> None:
    build = powershell_value("(Get-CimInstance Win32_OperatingSystem).BuildNumber")
    try:
        number = int(build)
    except ValueError:
        raise CrcError(f"Failed to get Windows build number from '{build}'") from None
    if number < MIN_WINDOWS_BUILD:
        raise CrcError(f"Windows build {number} is older than the minimum supported build {MIN_WINDOWS_BUILD}")


def check_windows_edition() -> None:
    edition = powershell_value(
        r"(Get-ItemProperty -Path 'HKLM:\SOFTWARE\Microsoft\Windows NT\CurrentVersion' -Name EditionID).EditionID"
    )
    log("DEBUG", f"Running on Windows {edition} edition")
    if edition.lower() == "core":
        raise CrcError("Windows Home edition is not supported")


def check_hyperv_installed() -> None:
    present = powershell_value("@(Get-CimInstance Win32_ComputerSystem).HypervisorPresent")
    if present != "True":
        raise CrcError("Hyper-V not installed")
    if not powershell_succeeds("Get-Command Get-VM"):
        raise CrcError("Hyper-V PowerShell module is not available")


def fix_hyperv_installed() -> None:
    run_powershell(
        "Enable-WindowsOptionalFeature -Online -FeatureName Microsoft-Hyper-V -All -NoRestart",
        elevated=True,
    )
    raise CrcError("Please reboot your system and run 'crc setup' to complete the setup process")


def check_crc_users_group_exists() -> None:
    if not powershell_succeeds(f"Get-LocalGroup -Name {CRC_USERS_GROUP}"):
        raise CrcError(f"'{CRC_USERS_GROUP}' group does not exist")


def fix_crc_users_group_exists() -> None:
    run_powershell(
        f"New-LocalGroup -Name {CRC_USERS_GROUP} -Description 'Group for crc users'",
        elevated=True,
    )


def check_user_in_groups() -> None:
    stdout = powershell_value("whoami /groups /fo csv")
    if CRC_USERS_GROUP not in stdout:
        raise CrcError(f"current user is not a member of the '{CRC_USERS_GROUP}' group")
    if HYPERV_ADMINS_SID not in stdout:
        raise CrcError("current user is not a member of the Hyper-V Administrators group")


def fix_user_in_groups() -> None:
    user = quote(getpass.getuser())
    run_powershell(
        f"Add-LocalGroupMember -Group {CRC_USERS_GROUP} -Member {user}; "
        f"Add-LocalGroupMember -SID {quote(HYPERV_ADMINS_SID)} -Member {user}",
        elevated=True,
    )
    log("WARN", "You need to log out and log back in for the group membership changes to apply")


def check_hyperv_service_running() -> None:
    status = powershell_value(f"(Get-Service {HYPERV_SERVICE}).Status")
    if status != "Running":
        raise CrcError(f"Hyper-V service ({HYPERV_SERVICE}) is not running")


def fix_hyperv_service_running() -> None:
    run_powershell(
        f"Set-Service -Name {HYPERV_SERVICE} -StartupType Automatic; Start-Service -Name {HYPERV_SERVICE}",
        elevated=True,
    )


# Daemon scheduled task


def daemon_task_xml(user: str) -> str:
    return DAEMON_TASK_TEMPLATE.format(
        version=escape(VERSION),
        user=escape(user),
        command=escape(str(runtime_executable_path())),
    )


def check_daemon_task_installed() -> None:
    if not powershell_succeeds(f"Get-ScheduledTask -TaskName {DAEMON_TASK_NAME}"):
        raise CrcError(f"{DAEMON_TASK_NAME} task is not installed")
    version = powershell_value(f"(Get-ScheduledTask -TaskName {DAEMON_TASK_NAME}).Version")
    if version != VERSION:
        raise CrcError(f"expected {DAEMON_TASK_NAME} task to be on version '{VERSION}' but got '{version}'")


def fix_daemon_task_installed() -> None:
    remove_daemon_task()
    xml = daemon_task_xml(getpass.getuser())
    run_powershell(f"Register-ScheduledTask -Xml {quote(xml)} -TaskName {DAEMON_TASK_NAME}")


def remove_daemon_task() -> None:
    if not powershell_succeeds(f"Get-ScheduledTask -TaskName {DAEMON_TASK_NAME}"):
        return
    if powershell_value(f"(Get-ScheduledTask -TaskName {DAEMON_TASK_NAME}).State") == "Running":
        run_powershell(f"Stop-ScheduledTask -TaskName {DAEMON_TASK_NAME}")
    run_powershell(f"Unregister-ScheduledTask -TaskName {DAEMON_TASK_NAME} -Confirm:$false")


def check_daemon_task_running() -> None:
    state = powershell_value(f"(Get-ScheduledTask -TaskName {DAEMON_TASK_NAME}).State")
    if state != "Running":
        raise CrcError(f"expected {DAEMON_TASK_NAME} task to be in 'Running' but got '{state}'")


def fix_daemon_task_running() -> None:
    run_powershell(f"Start-ScheduledTask -TaskName {DAEMON_TASK_NAME}")


def stop_daemon_task() -> None:
    if not powershell_succeeds(f"Get-ScheduledTask -TaskName {DAEMON_TASK_NAME}"):
        return
    if powershell_value(f"(Get-ScheduledTask -TaskName {DAEMON_TASK_NAME}).State") == "Running":
        run_powershell(f"Stop-ScheduledTask -TaskName {DAEMON_TASK_NAME}")


def remove_crc_vm() -> None:
    name = quote(DEFAULT_DOMAIN_NAME)
    if not powershell_succeeds(f"Get-VM -Name {name}"):
        log("DEBUG", "No crc VM to remove")
        return
    run_powershell(f"Stop-VM -Name {name} -TurnOff; Remove-VM -Name {name} -Force", elevated=True)


# Network modes


def check_hyperv_switch() -> None:
    if not powershell_succeeds(f"Get-VMSwitch -Name {quote(DEFAULT_SWITCH)}"):
        raise CrcError(f"Hyper-V virtual switch '{DEFAULT_SWITCH}' not found")


def remove_dns_server_address() -> None:
    alias = quote(f"vEthernet ({DEFAULT_SWITCH})")
    run_powershell(
        f"Set-DnsClientServerAddress -InterfaceAlias {alias} -ResetServerAddresses",
        elevated=True,
    )


def check_vsock() -> None:
    if not powershell_succeeds(f"Get-Item -Path {quote(VSOCK_REGISTRY_KEY)}"):
        raise CrcError("Hyper-V vsock integration service is not registered")


def fix_vsock() -> None:
    key = quote(VSOCK_REGISTRY_KEY)
    run_powershell(
        f"New-Item -Path {key}; New-ItemProperty -Path {key} -Name ElementName -Value 'gvisor-tap-vsock'",
        elevated=True,
    )


# Tray (experimental)


def check_tray_installed() -> None:
    if not (TRAY_DIR / TRAY_EXE_NAME).exists():
        raise CrcError(f"{TRAY_EXE_NAME} is not installed in {TRAY_DIR}")


def fix_tray_installed() -> None:
    archive = CACHE_DIR / "crc-tray-windows.zip"
    download_file(TRAY_WINDOWS_URL.format(version=TRAY_VERSION), archive, label="Downloading tray", mode=0o644)
    if TRAY_DIR.exists():
        shutil.rmtree(TRAY_DIR)
    ensure_directory(TRAY_DIR)
    with zipfile.ZipFile(archive) as zf:
        zf.extractall(TRAY_DIR)
    archive.unlink()


def remove_tray() -> None:
    if TRAY_DIR.exists():
        shutil.rmtree(TRAY_DIR)


def check_tray_autostart() -> None:
    value = powershell_value(
        f"(Get-ItemProperty -Path {quote(RUN_REGISTRY_KEY)} -Name {TRAY_RUN_VALUE} -ErrorAction SilentlyContinue).'{TRAY_RUN_VALUE}'"
    )
    if value != str(TRAY_DIR / TRAY_EXE_NAME):
        raise CrcError("tray is not set to start at login")


def fix_tray_autostart() -> None:
    run_powershell(
        f"Set-ItemProperty -Path {quote(RUN_REGISTRY_KEY)} -Name {TRAY_RUN_VALUE} "
        f"-Value {quote(str(TRAY_DIR / TRAY_EXE_NAME))}"
    )


def remove_tray_autostart() -> None:
    run_powershell(
        f"Remove-ItemProperty -Path {quote(RUN_REGISTRY_KEY)} -Name {TRAY_RUN_VALUE} -ErrorAction SilentlyContinue"
    )


def windows_checks(ctx: CatalogContext) -> List[Check]:
    labels = os_label(HostOS.WINDOWS)
    return [
        Check(
            identity="check-administrator-user",
            check_description="Checking if running in a shell with administrator rights",
            check=check_administrator_user,
            fix_description="crc should be ran in a shell without administrator rights",
            flags=NO_FIX,
            labels=labels,
        ),
        Check(
            identity="check-windows-version",
            check_description="Checking Windows release",
            check=check_windows_version,
            fix_description=f"Please update Windows to build {MIN_WINDOWS_BUILD} or newer",
            flags=NO_FIX,
            labels=labels,
        ),
        Check(
            identity="check-windows-edition",
            check_description="Checking Windows edition",
            check=check_windows_edition,
            fix_description="Your Windows edition is not supported. Consider using Professional or Enterprise editions of Windows",
            flags=NO_FIX,
            labels=labels,
        ),
        Check(
            identity="check-hyperv-installed",
            check_description="Checking if Hyper-V is installed and operational",
            check=check_hyperv_installed,
            fix_description="Installing Hyper-V",
            fix=fix_hyperv_installed,
            labels=labels,
        ),
        Check(
            identity="check-crc-users-group-exists",
            check_description="Checking if crc-users group exists",
            check=check_crc_users_group_exists,
            fix_description="Creating crc-users group",
            fix=fix_crc_users_group_exists,
            labels=labels,
        ),
        Check(
            identity="check-user-in-crc-users-and-hyperv-admins-group",
            check_description="Checking if current user is in crc-users and Hyper-V admins group",
            check=check_user_in_groups,
            fix_description="Adding current user to crc-users and Hyper-V admins group",
            fix=fix_user_in_groups,
            labels=labels,
        ),
        Check(
            identity="check-hyperv-service-running",
            check_description="Checking if Hyper-V service is enabled",
            check=check_hyperv_service_running,
            fix_description="Enabling Hyper-V service",
            fix=fix_hyperv_service_running,
            labels=labels,
        ),
        Check(
            identity="check-admin-helper-cached",
            check_description="Checking if crc-admin-helper executable is cached",
            check=partial(check_admin_helper_cached, HostOS.WINDOWS),
            fix_description="Caching crc-admin-helper executable",
            fix=partial(fix_admin_helper_cached, HostOS.WINDOWS),
            labels=labels,
        ),
        Check(
            identity="check-daemon-task-install",
            check_description="Checking if the daemon task is installed",
            check=check_daemon_task_installed,
            fix_description="Installing the daemon task",
            fix=fix_daemon_task_installed,
            cleanup_description="Removing the daemon task",
            cleanup=remove_daemon_task,
            labels=labels,
        ),
        Check(
            identity="check-daemon-task-running",
            check_description="Checking if the daemon task is running",
            check=check_daemon_task_running,
            fix_description="Running the daemon task",
            fix=fix_daemon_task_running,
            cleanup_description="Stopping the daemon task",
            cleanup=stop_daemon_task,
            labels=labels,
        ),
        Check(
            cleanup_description="Removing hosts file records added by CRC",
            cleanup=partial(remove_hosts_file_entries, HostOS.WINDOWS),
            flags=CLEANUP_ONLY,
            labels=labels,
        ),
        Check(
            cleanup_description="Removing crc VM",
            cleanup=remove_crc_vm,
            flags=CLEANUP_ONLY,
            labels=labels,
        ),
    ]


def windows_network_checks(ctx: CatalogContext) -> List[Check]:
    system = mode_label(HostOS.WINDOWS, NetworkMode.SYSTEM)
    user = mode_label(HostOS.WINDOWS, NetworkMode.USER)
    return [
        Check(
            identity="check-hyperv-switch",
            check_description="Checking if the Hyper-V virtual switch exists",
            check=check_hyperv_switch,
            fix_description="Unable to perform Hyper-V administrative commands. Please reboot your system and run 'crc setup' to complete the setup process",
            flags=NO_FIX,
            labels=system,
        ),
        Check(
            cleanup_description="Removing dns server from interface",
            cleanup=remove_dns_server_address,
            flags=CLEANUP_ONLY,
            labels=system,
        ),
        Check(
            identity="check-vsock",
            check_description="Checking if vsock is correctly configured",
            check=check_vsock,
            fix_description="Checking if vsock is correctly configured",
            fix=fix_vsock,
            labels=user,
        ),
    ]


def tray_checks(ctx: CatalogContext) -> List[Check]:
    labels = os_label(HostOS.WINDOWS)
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


class WindowsChecks(PlatformChecks):
    os = HostOS.WINDOWS

    def checks(self, ctx: CatalogContext) -> List[Check]:
        return windows_checks(ctx)

    def network_checks(self, ctx: CatalogContext) -> List[Check]:
        return windows_network_checks(ctx)

    def experimental_checks(self, ctx: CatalogContext) -> List[Check]:
        if not ctx.tray_autostart:
            return []
        return tray_checks(ctx)
