"""Tests for crc.checks module."""

from __future__ import annotations

import pytest

from crc.checks import (
    CLEANUP_ONLY,
    NO_FIX,
    NO_FLAGS,
    SETUP_ONLY,
    START_ONLY,
    CatalogContext,
    Check,
    Flags,
    PlatformChecks,
)
from crc.constants import CACHE_DIR
from crc.models import HostOS, NetworkMode, Preset


def _noop() -> None:
    return None


class TestFlags:
    def test_default_is_empty(self):
        assert NO_FLAGS == Flags()
        assert not any([NO_FLAGS.setup_only, NO_FLAGS.start_only, NO_FLAGS.no_fix, NO_FLAGS.cleanup_only])

    def test_combine(self):
        combined = SETUP_ONLY | NO_FIX
        assert combined.setup_only is True
        assert combined.no_fix is True
        assert combined.start_only is False

    def test_setup_and_start_only_rejected(self):
        with pytest.raises(ValueError, match="setup-only and start-only"):
            Flags(setup_only=True, start_only=True)

    def test_combining_conflicting_flags_rejected(self):
        with pytest.raises(ValueError):
            SETUP_ONLY | START_ONLY

    def test_cleanup_only_with_phase_rejected(self):
        with pytest.raises(ValueError, match="cleanup-only"):
            CLEANUP_ONLY | START_ONLY

    def test_frozen(self):
        with pytest.raises(AttributeError):
            NO_FLAGS.no_fix = True


class TestCheck:
    def test_capabilities(self):
        check = Check(
            identity="check-foo",
            check_description="Checking foo",
            check=_noop,
            fix_description="Fixing foo",
            fix=_noop,
        )
        assert check.checkable
        assert check.fixable
        assert not check.cleanable

    def test_no_fix_flag_disables_fix(self):
        check = Check(
            identity="check-foo",
            check_description="Checking foo",
            check=_noop,
            fix_description="Fixing foo",
            fix=_noop,
            flags=NO_FIX,
        )
        assert not check.fixable

    def test_missing_fix_is_not_fixable(self):
        check = Check(identity="check-foo", check_description="Checking foo", check=_noop, fix_description="manual")
        assert not check.fixable

    def test_cleanup_only(self):
        check = Check(cleanup_description="Removing foo", cleanup=_noop, flags=CLEANUP_ONLY)
        assert check.cleanable
        assert not check.checkable
        assert check.identity == ""

    @pytest.mark.parametrize("kwargs", [
        {"check": _noop},
        {"check_description": "Checking", "check": _noop, "fix": _noop},
        {"cleanup": _noop},
    ])
    def test_missing_description_rejected(self, kwargs):
        with pytest.raises(ValueError, match="empty description"):
            Check(identity="check-foo", **kwargs)

    def test_setting_names(self):
        check = Check(identity="check-foo", check_description="Checking foo", check=_noop)
        assert check.skip_setting == "skip-check-foo"
        assert check.warn_setting == "warn-check-foo"

    def test_setting_names_empty_identity(self):
        check = Check(cleanup_description="Removing foo", cleanup=_noop, flags=CLEANUP_ONLY)
        assert check.skip_setting == ""
        assert check.warn_setting == ""


class TestCatalogContext:
    def test_defaults(self):
        ctx = CatalogContext(os=HostOS.LINUX)
        assert ctx.network_mode == NetworkMode.SYSTEM
        assert ctx.preset == Preset.OPENSHIFT
        assert ctx.experimental is False

    def test_default_bundle(self):
        ctx = CatalogContext(os=HostOS.LINUX)
        assert ctx.bundle.parent == CACHE_DIR
        assert ctx.bundle.name == "crc_libvirt_4.14.3_amd64.crcbundle"

    def test_bundle_override(self, tmp_path):
        bundle = tmp_path / "custom.crcbundle"
        ctx = CatalogContext(os=HostOS.DARWIN, bundle_path=bundle)
        assert ctx.bundle == bundle


class TestPlatformChecks:
    def test_base_class_requires_checks(self):
        with pytest.raises(NotImplementedError):
            PlatformChecks().checks(CatalogContext(os=HostOS.LINUX))

    def test_optional_tables_default_empty(self):
        ctx = CatalogContext(os=HostOS.LINUX)
        assert PlatformChecks().network_checks(ctx) == []
        assert PlatformChecks().experimental_checks(ctx) == []
