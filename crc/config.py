"""Typed configuration store for crc.

Settings are declared up front with :meth:`Config.add_setting` (name, default
value, validator, apply callback) and their values live in a pluggable storage
backend. ``crc config set`` goes through validation and returns the callback's
message to the user; reads always fall back to the declared default.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from crc.constants import (
    CONFIG_PATH,
    DEFAULT_DISK_SIZE,
    ENV_PREFIX,
    FALSY,
    TRUTHY,
    default_cpus,
    default_memory,
)
from crc.exceptions import ConfigError
from crc.models import HostOS, NetworkMode, Preset
from crc.runtime import detect_host_os
from crc.utils import ensure_directory, log

# Setting names
BUNDLE = "bundle"
CPUS = "cpus"
MEMORY = "memory"
DISK_SIZE = "disk-size"
EXPERIMENTAL_FEATURES = "enable-experimental-features"
NETWORK_MODE = "network-mode"
CONSENT_TELEMETRY = "consent-telemetry"
PRESET = "preset"
AUTOSTART_TRAY = "autostart-tray"

_CONFIG_PROP_DOESNT_EXIST = "Configuration property '{}' does not exist"

ValidationFn = Callable[[Any], Tuple[bool, str]]
ApplyFn = Callable[[str, Any], str]


@dataclass
class Setting:
    name: str
    default: Any
    validate: ValidationFn
    apply: ApplyFn
    help: str = ""


@dataclass
class SettingValue:
    value: Any = None
    is_default: bool = False
    invalid: bool = False

    def as_bool(self) -> bool:
        return to_bool(self.value)

    def as_int(self) -> int:
        return int(self.value)

    def as_str(self) -> str:
        return "" if self.value is None else str(self.value)


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    raw = str(value).strip().lower()
    if raw in TRUTHY:
        return True
    if raw in FALSY:
        return False
    raise ValueError(f"'{value}' is not a boolean")


def _cast(value: Any, like: Any) -> Any:
    if isinstance(like, bool):
        return to_bool(value)
    if isinstance(like, int):
        return int(value)
    if isinstance(like, str):
        return "" if value is None else str(value)
    return value


# Validators


def validate_bool(value: Any) -> Tuple[bool, str]:
    try:
        to_bool(value)
    except ValueError:
        return False, "must be true or false"
    return True, ""


def validate_yes_no(value: Any) -> Tuple[bool, str]:
    if str(value).lower() in {"yes", "no", ""}:
        return True, ""
    return False, "must be yes or no"


def validate_preset(value: Any) -> Tuple[bool, str]:
    valid = [preset.value for preset in Preset]
    if str(value).lower() in valid:
        return True, ""
    return False, f"Unknown preset. Only {', '.join(valid)} are valid."


def validate_network_mode(value: Any) -> Tuple[bool, str]:
    valid = [mode.value for mode in NetworkMode]
    if str(value).lower() in valid:
        return True, ""
    return False, f"network mode should be either {' or '.join(valid)}"


def validate_bundle_path(value: Any) -> Tuple[bool, str]:
    if not value:
        return True, ""
    path = Path(str(value)).expanduser()
    if not path.exists():
        return False, f"file '{path}' does not exist"
    return True, ""


def validate_tray_autostart(value: Any) -> Tuple[bool, str]:
    if detect_host_os() == HostOS.LINUX:
        return False, "Tray autostart is only supported on macOS and windows"
    return validate_bool(value)


def validate_int_at_least(minimum: int) -> ValidationFn:
    def _validate(value: Any) -> Tuple[bool, str]:
        try:
            number = int(value)
        except (TypeError, ValueError):
            return False, "must be an integer"
        if number < minimum:
            return False, f"must be greater than or equal to {minimum}"
        return True, ""

    return _validate


# Apply callbacks: the returned message is shown to the user after ``config set``.


def successfully_applied(key: str, value: Any) -> str:
    return f"Successfully configured {key} to {value}"


def requires_restart_msg(key: str, _value: Any) -> str:
    return (
        f"Changes to configuration property '{key}' are only applied when the CRC instance is started.\n"
        "If you already have a running CRC instance, then for this configuration change to take effect, "
        "stop the CRC instance with 'crc stop' and restart it with 'crc start'."
    )


def requires_delete_msg(key: str, _value: Any) -> str:
    return (
        f"Changes to configuration property '{key}' are only applied when the CRC instance is created.\n"
        "If you already have a running CRC instance, then for this configuration change to take effect, "
        "delete the CRC instance with 'crc delete' and start it with 'crc start'."
    )


def tray_autostart_msg(key: str, value: Any) -> str:
    shown = str(value).lower()
    if to_bool(value):
        return f"Successfully configured '{key}' to '{shown}'. Run 'crc setup' for it to take effect."
    return (
        f"Successfully configured '{key}' to '{shown}'. "
        "Run 'crc cleanup' and then 'crc setup' for it to take effect."
    )


def requires_cleanup_and_setup_msg(key: str, _value: Any) -> str:
    return (
        f"Changes to configuration property '{key}' are only applied during 'crc setup'.\n"
        "Please run 'crc cleanup' followed by 'crc setup' for this configuration to take effect."
    )


# Storage backends


class InMemoryStorage:
    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def unset(self, key: str) -> None:
        self._values.pop(key, None)


class YamlStorage:
    """Settings persisted as a flat YAML mapping; ``<PREFIX>_<KEY>`` env vars take precedence."""

    def __init__(self, path: Path = CONFIG_PATH, env_prefix: str = ENV_PREFIX) -> None:
        self.path = path
        self.env_prefix = env_prefix
        self._values = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = yaml.safe_load(self.path.read_text())
        except yaml.YAMLError as exc:
            raise ConfigError(f"error reading configuration file '{self.path}': {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"error reading configuration file '{self.path}': expected a mapping")
        return data

    def _env_name(self, key: str) -> str:
        return f"{self.env_prefix}_{key.replace('-', '_').upper()}"

    def get(self, key: str) -> Any:
        env_value = os.environ.get(self._env_name(key))
        if env_value is not None:
            return env_value
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        self._write()

    def unset(self, key: str) -> None:
        self._values.pop(key, None)
        self._write()

    def _write(self) -> None:
        ensure_directory(self.path.parent)
        with tempfile.NamedTemporaryFile(
            "w", delete=False, dir=self.path.parent, prefix=self.path.stem, suffix=self.path.suffix
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                yaml.safe_dump(self._values, tmp, default_flow_style=False, sort_keys=True)
                tmp.flush()
                os.chmod(tmp_path, 0o600)
                tmp_path.replace(self.path)
            except Exception:
                tmp_path.unlink(missing_ok=True)
                raise


class Config:
    def __init__(self, storage: Any) -> None:
        self.storage = storage
        self._settings: Dict[str, Setting] = {}

    def add_setting(
        self,
        name: str,
        default: Any,
        validate: ValidationFn,
        apply: ApplyFn,
        help: str = "",
    ) -> Setting:
        setting = Setting(name=name, default=default, validate=validate, apply=apply, help=help)
        self._settings[name] = setting
        return setting

    def has_setting(self, name: str) -> bool:
        return name in self._settings

    def settings(self) -> Dict[str, Setting]:
        return dict(self._settings)

    def all_configs(self) -> Dict[str, SettingValue]:
        return {key: self.get(key) for key in self._settings}

    def get(self, key: str) -> SettingValue:
        setting = self._settings.get(key)
        if setting is None:
            return SettingValue(invalid=True)
        raw = self.storage.get(key)
        if raw is None:
            raw = setting.default
        try:
            value = _cast(raw, setting.default)
        except (TypeError, ValueError):
            log("WARN", f"Ignoring invalid value '{raw}' for '{key}', using default '{setting.default}'")
            value = setting.default
        return SettingValue(value=value, is_default=value == setting.default)

    def set(self, key: str, value: Any) -> str:
        setting = self._settings.get(key)
        if setting is None:
            raise ConfigError(_CONFIG_PROP_DOESNT_EXIST.format(key))
        ok, reason = setting.validate(value)
        if ok:
            try:
                value = _cast(value, setting.default)
            except (TypeError, ValueError) as exc:
                ok, reason = False, str(exc)
        if not ok:
            raise ConfigError(
                f"Value '{value}' for configuration property '{key}' is invalid, reason: {reason}"
            )
        self.storage.set(key, value)
        return setting.apply(key, value)

    def unset(self, key: str) -> str:
        if key not in self._settings:
            raise ConfigError(_CONFIG_PROP_DOESNT_EXIST.format(key))
        self.storage.unset(key)
        return f"Successfully unset configuration property '{key}'"


def register_settings(cfg: Config) -> None:
    """Declare the settings crc understands besides the per-check skip/warn pairs."""
    # Preset goes first: the CPU and memory defaults depend on it.
    cfg.add_setting(
        PRESET,
        Preset.OPENSHIFT.value,
        validate_preset,
        requires_delete_msg,
        f"Virtual machine preset (valid values are: {', '.join(p.value for p in Preset)})",
    )
    preset = get_preset(cfg)
    cfg.add_setting(BUNDLE, "", validate_bundle_path, successfully_applied, "Bundle path (string)")
    cfg.add_setting(
        CPUS,
        default_cpus(preset),
        validate_int_at_least(default_cpus(preset)),
        requires_restart_msg,
        f"Number of CPU cores (must be greater than or equal to '{default_cpus(preset)}')",
    )
    cfg.add_setting(
        MEMORY,
        default_memory(preset),
        validate_int_at_least(default_memory(preset)),
        requires_restart_msg,
        f"Memory size in MiB (must be greater than or equal to '{default_memory(preset)}')",
    )
    cfg.add_setting(
        DISK_SIZE,
        DEFAULT_DISK_SIZE,
        validate_int_at_least(DEFAULT_DISK_SIZE),
        requires_restart_msg,
        f"Total size in GiB of the disk (must be greater than or equal to '{DEFAULT_DISK_SIZE}')",
    )
    cfg.add_setting(
        EXPERIMENTAL_FEATURES,
        False,
        validate_bool,
        successfully_applied,
        "Enable experimental features (true/false, default: false)",
    )
    cfg.add_setting(
        AUTOSTART_TRAY,
        True,
        validate_tray_autostart,
        tray_autostart_msg,
        "Automatically start the tray (true/false, default: true)",
    )
    cfg.add_setting(
        NETWORK_MODE,
        NetworkMode.SYSTEM.value,
        validate_network_mode,
        requires_cleanup_and_setup_msg,
        f"Network mode ({NetworkMode.USER.value} or {NetworkMode.SYSTEM.value})",
    )
    cfg.add_setting(
        CONSENT_TELEMETRY,
        "",
        validate_yes_no,
        successfully_applied,
        "Consent to collection of anonymous usage data (yes/no)",
    )


def get_preset(cfg: Config) -> Preset:
    return Preset.parse(cfg.get(PRESET).as_str())


def get_network_mode(cfg: Config) -> NetworkMode:
    return NetworkMode.parse(cfg.get(NETWORK_MODE).as_str())


def get_bundle_path(cfg: Config) -> Optional[Path]:
    raw = cfg.get(BUNDLE).as_str()
    return Path(raw).expanduser() if raw else None
