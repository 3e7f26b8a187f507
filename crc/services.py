"""Host service management (systemd) for crc."""

from __future__ import annotations

from pathlib import Path
from typing import List

from crc.exceptions import CrcError
from crc.utils import log, run, run_output, run_privileged, which

USER_UNIT_DIR = Path.home() / ".config" / "systemd" / "user"


class SystemdCommander:
    """Thin wrapper around ``systemctl`` for either the system or the user instance."""

    def __init__(self, user: bool = False) -> None:
        self.user = user

    def _systemctl(self) -> List[str]:
        path = which("systemctl")
        if path is None:
            raise CrcError("systemctl not found on path")
        return [path, "--user"] if self.user else [path]

    def _query(self, verb: str, unit: str) -> str:
        result = run([*self._systemctl(), verb, unit], check=False, capture_output=True)
        return result.stdout.strip()

    def _change(self, verb: str, unit: str) -> None:
        cmd = [*self._systemctl(), verb, unit]
        if self.user:
            run_output(cmd)
        else:
            run_privileged(f"Executing systemctl {verb} {unit}", cmd)

    def is_active(self, unit: str) -> bool:
        return self._query("is-active", unit) == "active"

    def is_enabled(self, unit: str) -> bool:
        return self._query("is-enabled", unit) == "enabled"

    def exists(self, unit: str) -> bool:
        return self._query("cat", unit) != ""

    def start(self, unit: str) -> None:
        log("DEBUG", f"Starting {unit}")
        self._change("start", unit)

    def stop(self, unit: str) -> None:
        log("DEBUG", f"Stopping {unit}")
        self._change("stop", unit)

    def enable(self, unit: str) -> None:
        self._change("enable", unit)

    def disable(self, unit: str) -> None:
        self._change("disable", unit)

    def reload(self, unit: str) -> None:
        self._change("reload", unit)

    def daemon_reload(self) -> None:
        cmd = [*self._systemctl(), "daemon-reload"]
        if self.user:
            run_output(cmd)
        else:
            run_privileged("Reloading systemd", cmd)
