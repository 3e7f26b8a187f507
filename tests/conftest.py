"""Shared test fixtures."""

from __future__ import annotations

import os
from typing import Optional

import pytest

from crc.checks import NO_FLAGS, Check, Flags
from crc.config import Config, InMemoryStorage, register_settings
from crc.exceptions import CrcError


class Recorder:
    """Zero-argument callable counting its calls, optionally failing each time."""

    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.calls = 0
        self.error = error

    def __call__(self) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error


@pytest.fixture
def clean_env(monkeypatch):
    """Remove CRC_* environment variables that could leak into config lookups."""
    for key in list(os.environ):
        if key.startswith("CRC_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def cfg(clean_env) -> Config:
    config = Config(InMemoryStorage())
    register_settings(config)
    return config


@pytest.fixture
def recorder():
    return Recorder


@pytest.fixture
def make_check():
    """Build a Check whose functions are Recorders; ``fail_*`` makes them raise CrcError."""

    def _make(
        identity: str = "check-sample",
        fail_check: bool = False,
        fail_fix: bool = False,
        fail_cleanup: bool = False,
        with_fix: bool = True,
        with_cleanup: bool = False,
        flags: Flags = NO_FLAGS,
        labels=None,
    ) -> Check:
        return Check(
            identity=identity,
            check_description=f"Checking {identity}",
            check=Recorder(CrcError(f"{identity} check failed") if fail_check else None),
            fix_description=f"Fixing {identity}",
            fix=Recorder(CrcError(f"{identity} fix failed") if fail_fix else None) if with_fix else None,
            cleanup_description=f"Cleaning {identity}" if with_cleanup else "",
            cleanup=Recorder(CrcError(f"{identity} cleanup failed") if fail_cleanup else None) if with_cleanup else None,
            flags=flags,
            labels=labels or {},
        )

    return _make
