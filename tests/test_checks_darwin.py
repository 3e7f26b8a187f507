"""Tests for crc.checks_darwin module."""

from __future__ import annotations

import os
import plistlib
import tarfile
from unittest.mock import patch

import pytest

from crc import checks_darwin as darwin
from crc.checks import CatalogContext
from crc.exceptions import CrcError
from crc.models import HostOS


@pytest.fixture
def agents_dir(tmp_path, monkeypatch):
    path = tmp_path / "LaunchAgents"
    monkeypatch.setattr(darwin, "LAUNCH_AGENTS_DIR", path)
    return path


@pytest.fixture
def launchctl():
    with (
        patch("crc.checks_darwin.run") as mock_run,
        patch("crc.checks_darwin.run_output") as mock_output,
    ):
        yield mock_run, mock_output


class TestCatalogTables:
    def test_platform_wiring(self):
        platform = darwin.DarwinChecks()
        ctx = CatalogContext(os=HostOS.DARWIN)
        assert [c.identity for c in platform.checks(ctx)][-3:] == [
            "check-vfkit-installed",
            "check-resolver-file-permissions",
            "check-daemon-launchd-plist",
        ]
        assert platform.network_checks(ctx) == []
        assert [c.identity for c in platform.experimental_checks(ctx)] == [
            "check-tray-installed",
            "check-tray-autostart",
        ]

    def test_tray_autostart_disabled(self):
        ctx = CatalogContext(os=HostOS.DARWIN, experimental=True, tray_autostart=False)
        assert darwin.DarwinChecks().experimental_checks(ctx) == []

    def test_labels_and_cleanups(self):
        ctx = CatalogContext(os=HostOS.DARWIN)
        for check in darwin.darwin_checks(ctx) + darwin.tray_checks(ctx):
            assert check.labels
            assert check.cleanable or check.identity == "check-vfkit-installed"


class TestVfkit:
    def test_not_cached(self, tmp_path, monkeypatch):
        monkeypatch.setattr(darwin, "VFKIT_PATH", tmp_path / "vfkit")
        with pytest.raises(CrcError, match="not cached"):
            darwin.check_vfkit_installed()

    def test_out_of_date(self, tmp_path, monkeypatch):
        vfkit = tmp_path / "vfkit"
        vfkit.write_text("")
        monkeypatch.setattr(darwin, "VFKIT_PATH", vfkit)
        with patch("crc.checks_darwin.run_output", return_value=("vfkit version: 0.1.0\n", "")):
            with pytest.raises(CrcError, match="out of date"):
                darwin.check_vfkit_installed()

    def test_fix(self, tmp_path, monkeypatch):
        monkeypatch.setattr(darwin, "VFKIT_PATH", tmp_path / "vfkit")
        with patch("crc.checks_darwin.download_file") as mock_download:
            darwin.fix_vfkit_installed()
        url, dest = mock_download.call_args.args
        assert url.endswith("/v0.5.1/vfkit")
        assert dest == tmp_path / "vfkit"


class TestResolverFile:
    @pytest.fixture
    def resolver(self, tmp_path, monkeypatch):
        monkeypatch.setattr(darwin, "RESOLVER_DIR", tmp_path / "resolver")
        monkeypatch.setattr(darwin, "RESOLVER_FILE", tmp_path / "resolver" / "testing")
        return tmp_path / "resolver" / "testing"

    def test_missing(self, resolver):
        with pytest.raises(CrcError, match="does not exist"):
            darwin.check_resolver_file_permissions()

    def test_owned_by_user(self, resolver):
        resolver.parent.mkdir()
        resolver.write_text("")
        darwin.check_resolver_file_permissions()

    def test_owned_by_someone_else(self, resolver):
        resolver.parent.mkdir()
        resolver.write_text("")
        with patch("crc.checks_darwin.os.getuid", return_value=os.getuid() + 1):
            with pytest.raises(CrcError, match="not owned by the current user"):
                darwin.check_resolver_file_permissions()

    def test_fix(self, resolver):
        with patch("crc.checks_darwin.run_privileged") as mock_priv:
            darwin.fix_resolver_file_permissions()
        commands = [c.args[1] for c in mock_priv.call_args_list]
        assert commands == [
            ["mkdir", "-p", str(resolver.parent)],
            ["touch", str(resolver)],
            ["chown", str(os.getuid()), str(resolver)],
        ]

    def test_remove(self, resolver):
        with patch("crc.checks_darwin.remove_file_as_root") as mock_remove:
            darwin.remove_resolver_file()
        mock_remove.assert_not_called()
        resolver.parent.mkdir()
        resolver.write_text("")
        with patch("crc.checks_darwin.remove_file_as_root") as mock_remove:
            darwin.remove_resolver_file()
        assert mock_remove.call_args.args[1] == resolver


class TestLaunchdAgents:
    def test_plist_content(self):
        content = plistlib.loads(darwin.agent_plist("crc.daemon", ["/usr/local/bin/crc", "daemon"], "d.log", keep_alive=True))
        assert content["Label"] == "crc.daemon"
        assert content["ProgramArguments"] == ["/usr/local/bin/crc", "daemon"]
        assert content["KeepAlive"] is True
        assert "RunAtLoad" not in content

    def test_check_install_remove(self, agents_dir, launchctl):
        mock_run, mock_output = launchctl
        content = darwin.agent_plist("crc.daemon", ["crc", "daemon"], "d.log")
        with pytest.raises(CrcError, match="is not installed"):
            darwin.check_agent("crc.daemon", content)

        darwin.install_agent("crc.daemon", content)
        darwin.check_agent("crc.daemon", content)
        mock_output.assert_called_once_with(["launchctl", "load", str(agents_dir / "crc.daemon.plist")])
        mock_run.assert_not_called()

        darwin.remove_agent("crc.daemon")
        assert not (agents_dir / "crc.daemon.plist").exists()
        assert mock_run.call_args.args[0][:2] == ["launchctl", "unload"]

    def test_outdated(self, agents_dir, launchctl):
        darwin.install_agent("crc.daemon", darwin.agent_plist("crc.daemon", ["/old/crc", "daemon"], "d.log"))
        with pytest.raises(CrcError, match="outdated configuration"):
            darwin.check_agent("crc.daemon", darwin.agent_plist("crc.daemon", ["/new/crc", "daemon"], "d.log"))

    def test_reinstall_unloads_first(self, agents_dir, launchctl):
        mock_run, _ = launchctl
        content = darwin.agent_plist("crc.daemon", ["crc", "daemon"], "d.log")
        darwin.install_agent("crc.daemon", content)
        darwin.install_agent("crc.daemon", content)
        assert mock_run.call_count == 1

    def test_daemon_plist_uses_executable(self, agents_dir, launchctl):
        with patch("crc.checks_darwin.runtime_executable_path", return_value="/usr/local/bin/crc"):
            darwin.fix_daemon_launchd_plist()
            darwin.check_daemon_launchd_plist()
            content = plistlib.loads((agents_dir / "crc.daemon.plist").read_bytes())
            assert content["ProgramArguments"] == ["/usr/local/bin/crc", "daemon"]
            darwin.remove_daemon_launchd_plist()
        assert not (agents_dir / "crc.daemon.plist").exists()


class TestTray:
    @pytest.fixture
    def tray_dir(self, tmp_path, monkeypatch):
        tray = tmp_path / "tray"
        monkeypatch.setattr(darwin, "TRAY_DIR", tray)
        monkeypatch.setattr(darwin, "TRAY_APP_PATH", tray / darwin.TRAY_APP_NAME)
        monkeypatch.setattr(darwin, "CACHE_DIR", tmp_path / "cache")
        return tray

    def _fake_download(self, tmp_path):
        app = tmp_path / "src" / darwin.TRAY_APP_NAME / "Contents"
        app.mkdir(parents=True)
        (app / "Info.plist").write_text("")

        def download(url, destination, label="", mode=0o755):
            destination.parent.mkdir(parents=True, exist_ok=True)
            with tarfile.open(destination, "w:gz") as tar:
                tar.add(app.parent, arcname=darwin.TRAY_APP_NAME)

        return download

    def test_install_and_remove(self, tmp_path, tray_dir):
        with pytest.raises(CrcError, match="is not installed"):
            darwin.check_tray_installed()
        with patch("crc.checks_darwin.download_file", side_effect=self._fake_download(tmp_path)):
            darwin.fix_tray_installed()
        darwin.check_tray_installed()
        assert not (tmp_path / "cache" / "crc-tray-macos.tar.gz").exists()
        darwin.remove_tray()
        assert not (tray_dir / darwin.TRAY_APP_NAME).exists()

    def test_autostart(self, tray_dir, agents_dir, launchctl):
        darwin.fix_tray_autostart()
        darwin.check_tray_autostart()
        content = plistlib.loads((agents_dir / "crc.tray.plist").read_bytes())
        assert content["RunAtLoad"] is True
        darwin.remove_tray_autostart()
        assert not (agents_dir / "crc.tray.plist").exists()
