"""Utility functions for crc."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from crc import constants
from crc.constants import VERSION
from crc.exceptions import CrcError

_verbose = constants._LOG_VERBOSE


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def log(level: str, message: str) -> None:
    """Lightweight structured logging with a coloured level prefix."""
    if level == "DEBUG" and not _verbose:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    stream = sys.stderr if level == "ERROR" else sys.stdout
    print(f"{colour}[{level}]{reset} {message}", file=stream, flush=True)


def human_size(num_bytes: float) -> str:
    """Format a byte count with decimal units, e.g. ``11.27GB``."""
    units = ["B", "kB", "MB", "GB", "TB", "PB"]
    value = float(num_bytes)
    for unit in units:
        if value < 1000 or unit == units[-1]:
            return f"{value:.4g}{unit}"
        value /= 1000
    return f"{value:.4g}PB"  # pragma: no cover


def download_file(url: str, destination: Path, label: str = "Downloading", mode: int = 0o755) -> None:
    """Download a file with a progress bar using Python urllib."""
    log("INFO", f"{label}: {url}")
    req = Request(url, headers={"User-Agent": f"crc/{VERSION}"})
    try:
        response = urlopen(req, timeout=60)
    except HTTPError as exc:
        raise CrcError(f"HTTP error downloading {url}: {exc.code} {exc.reason}")
    except URLError as exc:
        raise CrcError(f"Failed to download {url}: {exc.reason}")

    total = response.headers.get("Content-Length")
    total_bytes = int(total) if total else None
    downloaded = 0
    start_time = time.time()

    ensure_directory(destination.parent)
    with tempfile.NamedTemporaryFile(delete=False, dir=destination.parent) as tmp:
        tmp_path = Path(tmp.name)
        try:
            chunk_size = 1024 * 256  # 256 KiB
            while True:
                chunk = response.read(chunk_size)
                if not chunk:
                    break
                tmp.write(chunk)
                downloaded += len(chunk)
                if total_bytes:
                    pct = downloaded * 100 / total_bytes
                    print(f"\r  {pct:5.1f}% of {human_size(total_bytes)}", end="", flush=True)
            if total_bytes:
                print(flush=True)  # newline after progress
            tmp.flush()
            os.chmod(tmp_path, mode)
            tmp_path.replace(destination)
            elapsed = time.time() - start_time
            log("DEBUG", f"Downloaded {human_size(downloaded)} in {elapsed:.1f}s")
        except Exception:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
            raise


def kvm_available() -> bool:
    """Return True if /dev/kvm exists and can be opened."""
    kvm_path = Path("/dev/kvm")
    if not kvm_path.exists():
        return False
    try:
        fd = os.open(kvm_path, os.O_RDONLY)
    except OSError:
        return False
    else:
        os.close(fd)
        return True


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def which(name: str) -> Optional[str]:
    return shutil.which(name)


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result


def run_output(cmd: List[str], **kwargs) -> Tuple[str, str]:
    """Run a command, capture its output and fail with stderr in the message."""
    result = run(cmd, check=False, capture_output=True, **kwargs)
    if result.returncode != 0:
        raise CrcError(
            f"{' '.join(cmd)} failed (exit {result.returncode}): {result.stderr.strip() or result.stdout.strip()}"
        )
    return result.stdout, result.stderr


def run_privileged(reason: str, cmd: List[str], **kwargs) -> Tuple[str, str]:
    """Run a command as root through sudo, telling the user why a password may be asked for."""
    sudo = which("sudo")
    if sudo is None:
        raise CrcError(f"sudo executable not found, cannot {reason.lower()}")
    log("INFO", f"Using root access: {reason}")
    return run_output([sudo, *cmd], **kwargs)


def run_powershell(script: str, elevated: bool = False) -> Tuple[str, str]:
    """Run a PowerShell snippet; ``elevated`` wraps it in a UAC prompt."""
    if elevated:
        encoded = script.replace("'", "''")
        script = (
            "Start-Process powershell -Wait -WindowStyle Hidden -Verb RunAs "
            f"-ArgumentList '-NoProfile -NonInteractive -Command {encoded}'"
        )
    return run_output(["powershell.exe", "-NoProfile", "-NonInteractive", "-Command", script])


def write_file_as_root(reason: str, content: str, path: Path, mode: int = 0o644) -> None:
    run_privileged(reason, ["tee", str(path)], input=content)
    run_privileged(f"Changing permissions for {path}", ["chmod", format(mode, "o"), str(path)])


def remove_file_as_root(reason: str, path: Path) -> None:
    run_privileged(reason, ["rm", "-f", str(path)])
