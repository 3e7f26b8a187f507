"""Preflight check unit model.

A :class:`Check` describes one host precondition. It may carry up to three
behaviours, each a zero-argument callable that returns ``None`` on success and
raises on failure:

* ``check`` verifies the precondition,
* ``fix`` repairs it during ``crc setup``,
* ``cleanup`` reverts what ``fix`` did during ``crc cleanup``.

Engines never look at the callables directly; they ask for the matching
capability (:attr:`Check.checkable`, :attr:`Check.fixable`,
:attr:`Check.cleanable`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from crc.constants import default_bundle_path
from crc.labels import Labels
from crc.models import HostOS, NetworkMode, Preset

CheckFn = Callable[[], None]


@dataclass(frozen=True)
class Flags:
    """In which phase a check takes part, and whether its fix may run."""

    setup_only: bool = False
    start_only: bool = False
    no_fix: bool = False
    cleanup_only: bool = False

    def __post_init__(self) -> None:
        if self.setup_only and self.start_only:
            raise ValueError("a check cannot be both setup-only and start-only")
        if self.cleanup_only and (self.setup_only or self.start_only):
            raise ValueError("a cleanup-only check cannot also be setup-only or start-only")

    def __or__(self, other: "Flags") -> "Flags":
        return Flags(
            setup_only=self.setup_only or other.setup_only,
            start_only=self.start_only or other.start_only,
            no_fix=self.no_fix or other.no_fix,
            cleanup_only=self.cleanup_only or other.cleanup_only,
        )


NO_FLAGS = Flags()
SETUP_ONLY = Flags(setup_only=True)
START_ONLY = Flags(start_only=True)
NO_FIX = Flags(no_fix=True)
CLEANUP_ONLY = Flags(cleanup_only=True)


@dataclass(frozen=True)
class Check:
    identity: str = ""
    check_description: str = ""
    check: Optional[CheckFn] = None
    fix_description: str = ""
    fix: Optional[CheckFn] = None
    cleanup_description: str = ""
    cleanup: Optional[CheckFn] = None
    flags: Flags = NO_FLAGS
    labels: Labels = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        name = self.identity or self.check_description or self.cleanup_description
        if self.check is not None and not self.check_description:
            raise ValueError(f"empty description for check '{name}'")
        if self.fix is not None and not self.fix_description:
            raise ValueError(f"empty description for fix '{name}'")
        if self.cleanup is not None and not self.cleanup_description:
            raise ValueError(f"empty description for cleanup '{name}'")

    @property
    def checkable(self) -> bool:
        return self.check is not None

    @property
    def fixable(self) -> bool:
        return self.fix is not None and not self.flags.no_fix

    @property
    def cleanable(self) -> bool:
        return self.cleanup is not None

    @property
    def skip_setting(self) -> str:
        return f"skip-{self.identity}" if self.identity else ""

    @property
    def warn_setting(self) -> str:
        return f"warn-{self.identity}" if self.identity else ""


@dataclass(frozen=True)
class CatalogContext:
    """Everything catalog assembly depends on, passed explicitly."""

    os: HostOS
    network_mode: NetworkMode = NetworkMode.SYSTEM
    preset: Preset = Preset.OPENSHIFT
    experimental: bool = False
    tray_autostart: bool = True
    bundle_path: Optional[Path] = None

    @property
    def bundle(self) -> Path:
        if self.bundle_path is not None:
            return self.bundle_path
        return default_bundle_path(self.preset, self.os)


class PlatformChecks:
    """Provides the check tables of one host operating system."""

    os: HostOS

    def checks(self, ctx: CatalogContext) -> List[Check]:
        raise NotImplementedError

    def network_checks(self, ctx: CatalogContext) -> List[Check]:
        """Checks labelled with a network mode; the label filter picks the relevant ones."""
        return []

    def experimental_checks(self, ctx: CatalogContext) -> List[Check]:
        return []
