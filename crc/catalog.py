"""Assembly of the ordered preflight check catalog for a host."""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from crc.checks import CatalogContext, Check, PlatformChecks
from crc.checks_common import generic_checks
from crc.checks_darwin import DarwinChecks
from crc.checks_linux import LinuxChecks
from crc.checks_windows import WindowsChecks
from crc.labels import LabelFilter
from crc.models import HostOS

_PLATFORMS: Dict[HostOS, PlatformChecks] = {
    HostOS.LINUX: LinuxChecks(),
    HostOS.DARWIN: DarwinChecks(),
    HostOS.WINDOWS: WindowsChecks(),
}


def platform_for(host_os: HostOS) -> PlatformChecks:
    return _PLATFORMS[host_os]


def _ensure_unique_identities(checks: Iterable[Check]) -> None:
    seen = set()
    for check in checks:
        if not check.identity:
            continue
        if check.identity in seen:
            raise ValueError(f"duplicate preflight check identity '{check.identity}'")
        seen.add(check.identity)


def _assemble(ctx: CatalogContext, platform: PlatformChecks, experimental: bool) -> List[Check]:
    checks = [*generic_checks(ctx), *platform.checks(ctx), *platform.network_checks(ctx)]
    if experimental:
        checks.extend(platform.experimental_checks(ctx))
    return checks


def get_preflight_checks(ctx: CatalogContext, platform: Optional[PlatformChecks] = None) -> List[Check]:
    """Checks relevant for the host OS and the configured network mode.

    Order is generic checks, OS checks, network-mode checks, then experimental
    checks when ``ctx.experimental`` is set.
    """
    platform = platform or platform_for(ctx.os)
    checks = _assemble(ctx, platform, ctx.experimental)
    checks = LabelFilter.for_context(ctx.os, ctx.network_mode).apply(checks)
    _ensure_unique_identities(checks)
    return checks


def get_all_preflight_checks(ctx: CatalogContext, platform: Optional[PlatformChecks] = None) -> List[Check]:
    """Every check the host OS knows about, in all network modes and including experimental ones.

    Used to register skip/warn settings and to undo whatever an earlier
    ``crc setup`` may have done, whatever its configuration was.
    """
    ctx = replace(ctx, tray_autostart=True)
    platform = platform or platform_for(ctx.os)
    checks = _assemble(ctx, platform, experimental=True)
    checks = LabelFilter.for_context(ctx.os).apply(checks)
    _ensure_unique_identities(checks)
    return checks


def start_checks(checks: Iterable[Check]) -> List[Check]:
    return [c for c in checks if not c.flags.setup_only and not c.flags.cleanup_only]


def setup_checks(checks: Iterable[Check]) -> List[Check]:
    return [c for c in checks if not c.flags.start_only and not c.flags.cleanup_only]


def cleanup_checks(checks: Iterable[Check]) -> List[Check]:
    return [c for c in checks if c.cleanable or c.flags.cleanup_only]
