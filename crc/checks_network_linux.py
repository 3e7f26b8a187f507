"""Linux preflight checks depending on the network mode.

System mode runs the VM on the ``crc`` libvirt NAT network and resolves the
cluster domains through NetworkManager's dnsmasq plugin. User mode uses a
userspace network stack served by the crc daemon over vsock, so the daemon
has to be socket-activated by the user's systemd instance.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List

from crc.checks import NO_FIX, CatalogContext, Check
from crc.checks_common import runtime_executable_path
from crc.constants import (
    DAEMON_SERVICE_NAME,
    DAEMON_SOCKET_NAMES,
    DAEMON_SOCKET_PATH,
    LIBVIRT_NETWORK_NAME,
    LIBVIRT_NETWORK_UUID,
    NODE_IP,
)
from crc.exceptions import CrcError
from crc.labels import mode_label
from crc.models import HostOS, NetworkMode
from crc.network import libvirt_connection, lookup_network, render_crc_network_xml
from crc.services import USER_UNIT_DIR, SystemdCommander
from crc.utils import (
    ensure_directory,
    log,
    remove_file_as_root,
    run_privileged,
    which,
    write_file_as_root,
)

NM_CONFIG_PATH = Path("/etc/NetworkManager/conf.d/crc-nm-dnsmasq.conf")
NM_CONFIG = "[main]\ndns=dnsmasq\n"
DNSMASQ_CONFIG_PATH = Path("/etc/NetworkManager/dnsmasq.d/crc.conf")
DNSMASQ_CONFIG = (
    f"server=/crc.testing/{NODE_IP}\n"
    f"server=/apps-crc.testing/{NODE_IP}\n"
)

VSOCK_DEVICE = Path("/dev/vsock")
VSOCK_MODULE = "vhost_vsock"
VSOCK_MODULES_LOAD_PATH = Path("/etc/modules-load.d/vhost_vsock.conf")

# System networking mode


def check_network_manager_installed() -> None:
    log("DEBUG", "Checking if 'nmcli' is available")
    path = which("nmcli")
    if path is None:
        raise CrcError("NetworkManager cli nmcli was not found in path")
    log("DEBUG", f"'nmcli' was found in {path}")


def _nm_config_files() -> Dict[Path, str]:
    return {NM_CONFIG_PATH: NM_CONFIG, DNSMASQ_CONFIG_PATH: DNSMASQ_CONFIG}


def check_network_manager_config() -> None:
    log("DEBUG", "Checking NetworkManager configuration")
    for path, expected in _nm_config_files().items():
        if not path.exists():
            raise CrcError(f"File not found: {path}")
        if path.read_text() != expected:
            raise CrcError(f"Config file contains changes: {path}")
    log("DEBUG", "NetworkManager configuration is good")


def fix_network_manager_config() -> None:
    for path, content in _nm_config_files().items():
        write_file_as_root(f"Writing NetworkManager configuration to {path}", content, path, 0o644)
    SystemdCommander().reload("NetworkManager")


def remove_network_manager_config() -> None:
    if which("nmcli") is None:
        # nothing was written without NetworkManager
        return
    removed = False
    for path in _nm_config_files():
        if path.exists():
            remove_file_as_root(f"Removing NetworkManager configuration file {path}", path)
            removed = True
    if removed:
        SystemdCommander().reload("NetworkManager")


def check_crc_network() -> None:
    with libvirt_connection() as conn:
        network = lookup_network(conn)
        if network is None:
            raise CrcError(f"Libvirt network {LIBVIRT_NETWORK_NAME} not found")
        if network.UUIDString() != LIBVIRT_NETWORK_UUID:
            raise CrcError(f"Libvirt network {LIBVIRT_NETWORK_NAME} has an unexpected UUID")
    log("DEBUG", f"{LIBVIRT_NETWORK_NAME} network exists")


def fix_crc_network() -> None:
    with libvirt_connection() as conn:
        network = lookup_network(conn)
        if network is not None:
            # stale definition, e.g. with another UUID
            if network.isActive():
                network.destroy()
            network.undefine()
        conn.networkDefineXML(render_crc_network_xml())
    log("DEBUG", f"{LIBVIRT_NETWORK_NAME} network created")


def remove_crc_network() -> None:
    if which("virsh") is None:
        return
    with libvirt_connection() as conn:
        network = lookup_network(conn)
        if network is None:
            return
        if network.isActive():
            network.destroy()
        network.undefine()


def check_crc_network_active() -> None:
    with libvirt_connection() as conn:
        network = lookup_network(conn)
        if network is None:
            raise CrcError(f"Libvirt network {LIBVIRT_NETWORK_NAME} not found")
        if not network.isActive():
            raise CrcError(f"Libvirt network {LIBVIRT_NETWORK_NAME} is not active")
        if not network.autostart():
            raise CrcError(f"Libvirt network {LIBVIRT_NETWORK_NAME} is not set to autostart")


def fix_crc_network_active() -> None:
    with libvirt_connection() as conn:
        network = lookup_network(conn)
        if network is None:
            raise CrcError(f"Libvirt network {LIBVIRT_NETWORK_NAME} not found")
        if not network.isActive():
            network.create()
        network.setAutostart(1)


# User networking mode


def daemon_unit_files() -> Dict[str, str]:
    sockets = "\n".join(f"Requires={name}" for name in DAEMON_SOCKET_NAMES)
    return {
        DAEMON_SERVICE_NAME: (
            "[Unit]\n"
            "Description=CRC daemon\n"
            f"{sockets}\n"
            "\n"
            "[Service]\n"
            f"ExecStart={runtime_executable_path()} daemon\n"
        ),
        "crc-http.socket": (
            "[Unit]\n"
            "Description=CRC HTTP socket\n"
            "\n"
            "[Socket]\n"
            f"ListenStream={DAEMON_SOCKET_PATH}\n"
            f"Service={DAEMON_SERVICE_NAME}\n"
            "\n"
            "[Install]\n"
            "WantedBy=default.target\n"
        ),
        "crc-vsock.socket": (
            "[Unit]\n"
            "Description=CRC vsock socket\n"
            "\n"
            "[Socket]\n"
            "ListenStream=vsock::1024\n"
            f"Service={DAEMON_SERVICE_NAME}\n"
            "\n"
            "[Install]\n"
            "WantedBy=default.target\n"
        ),
    }


def _check_unit_file(name: str, expected: str) -> None:
    path = USER_UNIT_DIR / name
    if not path.exists():
        raise CrcError(f"{path} does not exist")
    if path.read_text() != expected:
        raise CrcError(f"{path} has unexpected content")


def _write_unit_file(name: str, content: str) -> None:
    ensure_directory(USER_UNIT_DIR)
    (USER_UNIT_DIR / name).write_text(content)


def _remove_unit_file(name: str) -> bool:
    path = USER_UNIT_DIR / name
    if not path.exists():
        return False
    path.unlink()
    return True


def check_daemon_systemd_unit() -> None:
    _check_unit_file(DAEMON_SERVICE_NAME, daemon_unit_files()[DAEMON_SERVICE_NAME])


def fix_daemon_systemd_unit() -> None:
    systemd = SystemdCommander(user=True)
    _write_unit_file(DAEMON_SERVICE_NAME, daemon_unit_files()[DAEMON_SERVICE_NAME])
    systemd.daemon_reload()
    if systemd.is_active(DAEMON_SERVICE_NAME):
        # pick up the new ExecStart
        systemd.stop(DAEMON_SERVICE_NAME)


def remove_daemon_systemd_unit() -> None:
    systemd = SystemdCommander(user=True)
    if systemd.is_active(DAEMON_SERVICE_NAME):
        systemd.stop(DAEMON_SERVICE_NAME)
    if _remove_unit_file(DAEMON_SERVICE_NAME):
        systemd.daemon_reload()


def check_daemon_systemd_sockets() -> None:
    systemd = SystemdCommander(user=True)
    files = daemon_unit_files()
    for name in DAEMON_SOCKET_NAMES:
        _check_unit_file(name, files[name])
        if not systemd.is_enabled(name):
            raise CrcError(f"{name} is not enabled")
        if not systemd.is_active(name):
            raise CrcError(f"{name} is not running")


def fix_daemon_systemd_sockets() -> None:
    systemd = SystemdCommander(user=True)
    files = daemon_unit_files()
    for name in DAEMON_SOCKET_NAMES:
        _write_unit_file(name, files[name])
    systemd.daemon_reload()
    for name in DAEMON_SOCKET_NAMES:
        systemd.enable(name)
        systemd.start(name)


def remove_daemon_systemd_sockets() -> None:
    systemd = SystemdCommander(user=True)
    removed = False
    for name in DAEMON_SOCKET_NAMES:
        if not (USER_UNIT_DIR / name).exists():
            continue
        if systemd.is_active(name):
            systemd.stop(name)
        systemd.disable(name)
        removed = _remove_unit_file(name) or removed
    if removed:
        systemd.daemon_reload()


def check_vsock() -> None:
    if not VSOCK_DEVICE.exists():
        raise CrcError(f"{VSOCK_DEVICE} not found, {VSOCK_MODULE} kernel module is not loaded")
    if not VSOCK_MODULES_LOAD_PATH.exists():
        raise CrcError(f"{VSOCK_MODULE} is not loaded at boot ({VSOCK_MODULES_LOAD_PATH} missing)")


def fix_vsock() -> None:
    run_privileged(f"Loading the {VSOCK_MODULE} kernel module", ["modprobe", VSOCK_MODULE])
    write_file_as_root(
        f"Loading {VSOCK_MODULE} at boot",
        f"{VSOCK_MODULE}\n",
        VSOCK_MODULES_LOAD_PATH,
        0o644,
    )


def network_checks(ctx: CatalogContext) -> List[Check]:
    system = mode_label(HostOS.LINUX, NetworkMode.SYSTEM)
    user = mode_label(HostOS.LINUX, NetworkMode.USER)
    return [
        Check(
            identity="check-network-manager-installed",
            check_description="Checking if NetworkManager is installed",
            check=check_network_manager_installed,
            fix_description="NetworkManager is required and must be installed manually",
            flags=NO_FIX,
            labels=system,
        ),
        Check(
            identity="check-network-manager-config",
            check_description="Checking if NetworkManager and dnsmasq are configured for crc",
            check=check_network_manager_config,
            fix_description="Writing NetworkManager and dnsmasq config for crc",
            fix=fix_network_manager_config,
            cleanup_description="Removing NetworkManager and dnsmasq config for crc",
            cleanup=remove_network_manager_config,
            labels=system,
        ),
        Check(
            identity="check-crc-network",
            check_description="Checking if libvirt 'crc' network is available",
            check=check_crc_network,
            fix_description="Setting up libvirt 'crc' network",
            fix=fix_crc_network,
            cleanup_description="Removing libvirt 'crc' network",
            cleanup=remove_crc_network,
            labels=system,
        ),
        Check(
            identity="check-crc-network-active",
            check_description="Checking if libvirt 'crc' network is active",
            check=check_crc_network_active,
            fix_description="Starting libvirt 'crc' network",
            fix=fix_crc_network_active,
            labels=system,
        ),
        Check(
            identity="check-daemon-systemd-unit",
            check_description="Checking crc daemon systemd service",
            check=check_daemon_systemd_unit,
            fix_description="Setting up crc daemon systemd service",
            fix=fix_daemon_systemd_unit,
            cleanup_description="Removing crc daemon systemd service",
            cleanup=remove_daemon_systemd_unit,
            labels=user,
        ),
        Check(
            identity="check-daemon-systemd-sockets",
            check_description="Checking crc daemon systemd socket units",
            check=check_daemon_systemd_sockets,
            fix_description="Setting up crc daemon systemd socket units",
            fix=fix_daemon_systemd_sockets,
            cleanup_description="Removing crc daemon systemd socket units",
            cleanup=remove_daemon_systemd_sockets,
            labels=user,
        ),
        Check(
            identity="check-vsock",
            check_description="Checking if vsock is correctly configured",
            check=check_vsock,
            fix_description="Setting up vsock support",
            fix=fix_vsock,
            labels=user,
        ),
    ]
