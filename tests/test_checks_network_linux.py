"""Tests for crc.checks_network_linux module."""

from __future__ import annotations

from unittest.mock import MagicMock, call, patch

import pytest

from crc import checks_network_linux as netlinux
from crc.constants import LIBVIRT_NETWORK_UUID
from crc.exceptions import CrcError


@pytest.fixture
def nm_paths(tmp_path, monkeypatch):
    nm = tmp_path / "conf.d" / "crc-nm-dnsmasq.conf"
    dnsmasq = tmp_path / "dnsmasq.d" / "crc.conf"
    monkeypatch.setattr(netlinux, "NM_CONFIG_PATH", nm)
    monkeypatch.setattr(netlinux, "DNSMASQ_CONFIG_PATH", dnsmasq)
    return nm, dnsmasq


@pytest.fixture
def unit_dir(tmp_path, monkeypatch):
    path = tmp_path / "systemd" / "user"
    monkeypatch.setattr(netlinux, "USER_UNIT_DIR", path)
    return path


@pytest.fixture
def systemd():
    with (
        patch("crc.checks_network_linux.SystemdCommander") as mock_cls,
        patch("crc.checks_network_linux.runtime_executable_path", return_value="/usr/local/bin/crc"),
    ):
        yield mock_cls.return_value


class TestNetworkManager:
    def test_nmcli_missing(self):
        with patch("crc.checks_network_linux.which", return_value=None):
            with pytest.raises(CrcError, match="nmcli was not found"):
                netlinux.check_network_manager_installed()

    def test_config_missing(self, nm_paths):
        with pytest.raises(CrcError, match="File not found"):
            netlinux.check_network_manager_config()

    def test_config_modified(self, nm_paths):
        nm, dnsmasq = nm_paths
        for path in nm_paths:
            path.parent.mkdir(parents=True)
        nm.write_text(netlinux.NM_CONFIG)
        dnsmasq.write_text("server=/crc.testing/10.0.0.1\n")
        with pytest.raises(CrcError, match="contains changes"):
            netlinux.check_network_manager_config()

    def test_config_good(self, nm_paths):
        nm, dnsmasq = nm_paths
        for path in nm_paths:
            path.parent.mkdir(parents=True)
        nm.write_text(netlinux.NM_CONFIG)
        dnsmasq.write_text(netlinux.DNSMASQ_CONFIG)
        netlinux.check_network_manager_config()

    def test_dnsmasq_points_at_node(self):
        assert "server=/apps-crc.testing/192.168.130.11" in netlinux.DNSMASQ_CONFIG

    def test_fix_writes_and_reloads(self, nm_paths, systemd):
        with patch("crc.checks_network_linux.write_file_as_root") as mock_write:
            netlinux.fix_network_manager_config()
        written = [c.args[2] for c in mock_write.call_args_list]
        assert written == list(nm_paths)
        systemd.reload.assert_called_once_with("NetworkManager")

    def test_remove_without_nmcli(self, nm_paths, systemd):
        with (
            patch("crc.checks_network_linux.which", return_value=None),
            patch("crc.checks_network_linux.remove_file_as_root") as mock_remove,
        ):
            netlinux.remove_network_manager_config()
        mock_remove.assert_not_called()
        systemd.reload.assert_not_called()

    def test_remove_existing(self, nm_paths, systemd):
        nm, _ = nm_paths
        nm.parent.mkdir(parents=True)
        nm.write_text(netlinux.NM_CONFIG)
        with (
            patch("crc.checks_network_linux.which", return_value="/usr/bin/nmcli"),
            patch("crc.checks_network_linux.remove_file_as_root") as mock_remove,
        ):
            netlinux.remove_network_manager_config()
        assert mock_remove.call_args.args[1] == nm
        systemd.reload.assert_called_once_with("NetworkManager")


class TestCrcNetwork:
    def test_missing(self):
        with (
            patch("crc.checks_network_linux.libvirt_connection"),
            patch("crc.checks_network_linux.lookup_network", return_value=None),
        ):
            with pytest.raises(CrcError, match="network crc not found"):
                netlinux.check_crc_network()

    def test_wrong_uuid(self):
        network = MagicMock()
        network.UUIDString.return_value = "00000000-0000-0000-0000-000000000000"
        with (
            patch("crc.checks_network_linux.libvirt_connection"),
            patch("crc.checks_network_linux.lookup_network", return_value=network),
        ):
            with pytest.raises(CrcError, match="unexpected UUID"):
                netlinux.check_crc_network()

    def test_present(self):
        network = MagicMock()
        network.UUIDString.return_value = LIBVIRT_NETWORK_UUID
        with (
            patch("crc.checks_network_linux.libvirt_connection"),
            patch("crc.checks_network_linux.lookup_network", return_value=network),
        ):
            netlinux.check_crc_network()

    def test_fix_replaces_stale_definition(self):
        stale = MagicMock()
        stale.isActive.return_value = 1
        with (
            patch("crc.checks_network_linux.libvirt_connection") as mock_conn,
            patch("crc.checks_network_linux.lookup_network", return_value=stale),
        ):
            netlinux.fix_crc_network()
        conn = mock_conn.return_value.__enter__.return_value
        stale.destroy.assert_called_once()
        stale.undefine.assert_called_once()
        xml = conn.networkDefineXML.call_args.args[0]
        assert LIBVIRT_NETWORK_UUID in xml

    def test_remove_without_virsh(self):
        with (
            patch("crc.checks_network_linux.which", return_value=None),
            patch("crc.checks_network_linux.libvirt_connection") as mock_conn,
        ):
            netlinux.remove_crc_network()
        mock_conn.assert_not_called()

    def test_remove_inactive(self):
        network = MagicMock()
        network.isActive.return_value = 0
        with (
            patch("crc.checks_network_linux.which", return_value="/usr/bin/virsh"),
            patch("crc.checks_network_linux.libvirt_connection"),
            patch("crc.checks_network_linux.lookup_network", return_value=network),
        ):
            netlinux.remove_crc_network()
        network.destroy.assert_not_called()
        network.undefine.assert_called_once()

    def test_not_active(self):
        network = MagicMock()
        network.isActive.return_value = 0
        with (
            patch("crc.checks_network_linux.libvirt_connection"),
            patch("crc.checks_network_linux.lookup_network", return_value=network),
        ):
            with pytest.raises(CrcError, match="is not active"):
                netlinux.check_crc_network_active()

    def test_no_autostart(self):
        network = MagicMock()
        network.isActive.return_value = 1
        network.autostart.return_value = 0
        with (
            patch("crc.checks_network_linux.libvirt_connection"),
            patch("crc.checks_network_linux.lookup_network", return_value=network),
        ):
            with pytest.raises(CrcError, match="autostart"):
                netlinux.check_crc_network_active()

    def test_fix_active(self):
        network = MagicMock()
        network.isActive.return_value = 0
        with (
            patch("crc.checks_network_linux.libvirt_connection"),
            patch("crc.checks_network_linux.lookup_network", return_value=network),
        ):
            netlinux.fix_crc_network_active()
        network.create.assert_called_once()
        network.setAutostart.assert_called_once_with(1)


class TestDaemonUnits:
    def test_unit_contents(self, systemd):
        files = netlinux.daemon_unit_files()
        assert set(files) == {"crc-daemon.service", "crc-http.socket", "crc-vsock.socket"}
        assert "ExecStart=/usr/local/bin/crc daemon" in files["crc-daemon.service"]
        assert "Requires=crc-http.socket" in files["crc-daemon.service"]
        assert "ListenStream=vsock::1024" in files["crc-vsock.socket"]

    def test_service_check_fix_cleanup(self, unit_dir, systemd):
        systemd.is_active.return_value = False
        with pytest.raises(CrcError, match="does not exist"):
            netlinux.check_daemon_systemd_unit()
        netlinux.fix_daemon_systemd_unit()
        netlinux.check_daemon_systemd_unit()
        systemd.daemon_reload.assert_called_once()
        systemd.stop.assert_not_called()

        netlinux.remove_daemon_systemd_unit()
        assert not (unit_dir / "crc-daemon.service").exists()

    def test_service_unexpected_content(self, unit_dir, systemd):
        unit_dir.mkdir(parents=True)
        (unit_dir / "crc-daemon.service").write_text("[Service]\nExecStart=/old/crc daemon\n")
        with pytest.raises(CrcError, match="unexpected content"):
            netlinux.check_daemon_systemd_unit()

    def test_fix_restarts_running_daemon(self, unit_dir, systemd):
        systemd.is_active.return_value = True
        netlinux.fix_daemon_systemd_unit()
        systemd.stop.assert_called_once_with("crc-daemon.service")

    def test_sockets(self, unit_dir, systemd):
        netlinux.fix_daemon_systemd_sockets()
        assert systemd.enable.call_args_list == [call("crc-http.socket"), call("crc-vsock.socket")]
        assert systemd.start.call_args_list == [call("crc-http.socket"), call("crc-vsock.socket")]

        systemd.is_enabled.return_value = True
        systemd.is_active.return_value = True
        netlinux.check_daemon_systemd_sockets()

        systemd.is_active.return_value = False
        with pytest.raises(CrcError, match="crc-http.socket is not running"):
            netlinux.check_daemon_systemd_sockets()

    def test_sockets_not_enabled(self, unit_dir, systemd):
        netlinux.fix_daemon_systemd_sockets()
        systemd.is_enabled.return_value = False
        with pytest.raises(CrcError, match="is not enabled"):
            netlinux.check_daemon_systemd_sockets()

    def test_remove_sockets(self, unit_dir, systemd):
        netlinux.fix_daemon_systemd_sockets()
        systemd.reset_mock()
        systemd.is_active.return_value = False
        netlinux.remove_daemon_systemd_sockets()
        assert list(unit_dir.iterdir()) == []
        assert systemd.disable.call_count == 2
        systemd.daemon_reload.assert_called_once()

    def test_remove_sockets_nothing_installed(self, unit_dir, systemd):
        netlinux.remove_daemon_systemd_sockets()
        systemd.disable.assert_not_called()
        systemd.daemon_reload.assert_not_called()


class TestVsock:
    def test_device_missing(self, tmp_path, monkeypatch):
        monkeypatch.setattr(netlinux, "VSOCK_DEVICE", tmp_path / "vsock")
        with pytest.raises(CrcError, match="kernel module is not loaded"):
            netlinux.check_vsock()

    def test_not_loaded_at_boot(self, tmp_path, monkeypatch):
        device = tmp_path / "vsock"
        device.write_text("")
        monkeypatch.setattr(netlinux, "VSOCK_DEVICE", device)
        monkeypatch.setattr(netlinux, "VSOCK_MODULES_LOAD_PATH", tmp_path / "vhost_vsock.conf")
        with pytest.raises(CrcError, match="not loaded at boot"):
            netlinux.check_vsock()

    def test_fix(self):
        with (
            patch("crc.checks_network_linux.run_privileged") as mock_priv,
            patch("crc.checks_network_linux.write_file_as_root") as mock_write,
        ):
            netlinux.fix_vsock()
        assert mock_priv.call_args.args[1] == ["modprobe", "vhost_vsock"]
        assert mock_write.call_args.args[1] == "vhost_vsock\n"
