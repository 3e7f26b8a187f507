"""Preflight execution engines and their entry points.

Three engines walk a check catalog in order:

* :func:`do_preflight_checks` only verifies (``crc start``),
* :func:`do_fix_preflight_checks` verifies and repairs (``crc setup``),
* :func:`do_cleanup_preflight_checks` reverts (``crc cleanup``).

Every check with an identity can be bypassed with ``skip-<identity>`` or have
its failures downgraded to a warning with ``warn-<identity>``. Both settings
are read from the config for each check, right before it runs.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from crc import config as crc_config
from crc.catalog import (
    cleanup_checks,
    get_all_preflight_checks,
    get_preflight_checks,
    setup_checks,
    start_checks,
)
from crc.checks import CatalogContext, Check
from crc.config import Config, successfully_applied, validate_bool
from crc.exceptions import ConfigError, CrcError, MultiError, PreflightError
from crc.models import HostOS
from crc.runtime import detect_host_os
from crc.status import CheckResult, JsonStatusStream, State
from crc.utils import log

def _bool_setting(cfg: Config, name: str) -> bool:
    value = cfg.get(name)
    if value.invalid:
        raise ConfigError(f"preflight setting '{name}' is not registered")
    return value.as_bool()


def _should_skip(cfg: Config, check: Check) -> bool:
    return bool(check.identity) and _bool_setting(cfg, check.skip_setting)


def _should_warn(cfg: Config, check: Check) -> bool:
    return bool(check.identity) and _bool_setting(cfg, check.warn_setting)


def _report(
    reporter: Optional[JsonStatusStream],
    kind: str,
    description: str,
    state: State,
    error: Optional[BaseException] = None,
) -> None:
    if reporter is None:
        return
    reporter.report(CheckResult(kind, description, state, str(error) if error is not None else None))


def _fail(cfg: Config, check: Check, description: str, cause: BaseException) -> None:
    """Log a warning if the check is warned about, raise PreflightError otherwise."""
    if _should_warn(cfg, check):
        log("WARN", str(cause))
        return
    raise PreflightError(description, cause) from cause


def _run_check(cfg: Config, check: Check, reporter: Optional[JsonStatusStream]) -> Optional[BaseException]:
    """Run the check function of ``check``; returns the failure, None on success or skip."""
    log("INFO", check.check_description)
    if _should_skip(cfg, check):
        log("WARN", "Skipping above check...")
        _report(reporter, "check", check.check_description, State.SKIPPED)
        return None
    try:
        check.check()
    except Exception as exc:
        log("DEBUG", f"{check.identity or check.check_description} failed: {exc}")
        _report(reporter, "check", check.check_description, State.FAILED, exc)
        return exc
    _report(reporter, "check", check.check_description, State.PASSED)
    return None


def do_register_settings(cfg: Config, checks: Iterable[Check]) -> None:
    for check in checks:
        if not check.identity:
            continue
        cfg.add_setting(
            check.skip_setting,
            False,
            validate_bool,
            successfully_applied,
            "Skip preflight check (true/false, default: false)",
        )
        cfg.add_setting(
            check.warn_setting,
            False,
            validate_bool,
            successfully_applied,
            "Enable preflight check warning (true/false, default: false)",
        )


def do_preflight_checks(cfg: Config, checks: Iterable[Check], reporter: Optional[JsonStatusStream] = None) -> None:
    for check in start_checks(checks):
        if not check.checkable:
            continue
        err = _run_check(cfg, check, reporter)
        if err is not None:
            _fail(cfg, check, check.check_description, err)


def do_fix_preflight_checks(
    cfg: Config,
    checks: Iterable[Check],
    check_only: bool = False,
    reporter: Optional[JsonStatusStream] = None,
) -> None:
    selected = setup_checks(checks)
    if reporter is not None:
        reporter.total(len(selected))
    for check in selected:
        if not check.checkable:
            continue
        err = _run_check(cfg, check, reporter)
        if err is None:
            continue
        if check_only:
            _fail(cfg, check, check.check_description, err)
            continue
        if not check.fixable:
            _fail(cfg, check, check.check_description, CrcError(check.fix_description))
            continue
        log("INFO", check.fix_description)
        try:
            check.fix()
        except Exception as exc:
            _report(reporter, "fix", check.fix_description, State.FAILED, exc)
            _fail(cfg, check, check.fix_description, exc)
            continue
        _report(reporter, "fix", check.fix_description, State.PASSED)


def do_cleanup_preflight_checks(checks: Iterable[Check], reporter: Optional[JsonStatusStream] = None) -> None:
    errors: List[BaseException] = []
    for check in cleanup_checks(checks):
        if not check.cleanable:
            continue
        log("INFO", check.cleanup_description)
        try:
            check.cleanup()
        except Exception as exc:
            log("ERROR", str(exc))
            _report(reporter, "cleanup", check.cleanup_description, State.FAILED, exc)
            errors.append(exc)
            continue
        _report(reporter, "cleanup", check.cleanup_description, State.PASSED)
    if errors:
        raise MultiError(errors)


def catalog_context(cfg: Config, host_os: HostOS) -> CatalogContext:
    return CatalogContext(
        os=host_os,
        network_mode=crc_config.get_network_mode(cfg),
        preset=crc_config.get_preset(cfg),
        experimental=cfg.get(crc_config.EXPERIMENTAL_FEATURES).as_bool(),
        tray_autostart=cfg.get(crc_config.AUTOSTART_TRAY).as_bool(),
        bundle_path=crc_config.get_bundle_path(cfg),
    )


def register_settings(cfg: Config, host_os: Optional[HostOS] = None) -> None:
    """Register skip/warn settings for every check the host OS knows about."""
    host_os = host_os or detect_host_os()
    do_register_settings(cfg, get_all_preflight_checks(catalog_context(cfg, host_os)))


def start_preflight_checks(
    cfg: Config,
    host_os: Optional[HostOS] = None,
    reporter: Optional[JsonStatusStream] = None,
) -> None:
    host_os = host_os or detect_host_os()
    do_preflight_checks(cfg, get_preflight_checks(catalog_context(cfg, host_os)), reporter)


def setup_host(
    cfg: Config,
    host_os: Optional[HostOS] = None,
    check_only: bool = False,
    reporter: Optional[JsonStatusStream] = None,
) -> None:
    host_os = host_os or detect_host_os()
    ctx = catalog_context(cfg, host_os)
    log("INFO", f"Using bundle path {ctx.bundle}")
    do_fix_preflight_checks(cfg, get_preflight_checks(ctx), check_only, reporter)


def cleanup_host(cfg: Config, host_os: Optional[HostOS] = None) -> None:
    host_os = host_os or detect_host_os()
    # All checks, so that changes made in another network mode or with
    # experimental features enabled are reverted as well.
    do_cleanup_preflight_checks(get_all_preflight_checks(catalog_context(cfg, host_os)))
