"""CLI entry points for crc."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from crc import config as crc_config
from crc import preflight
from crc.config import Config, YamlStorage
from crc.constants import CONFIG_PATH, ENV_PREFIX, VERSION
from crc.exceptions import ConfigError, CrcError, MultiError
from crc.models import HostOS
from crc.runtime import detect_host_os
from crc.status import JsonStatusStream
from crc.utils import log, set_verbose


def load_config(path: Path, host_os: HostOS) -> Config:
    """Open the config file and declare every setting crc knows about."""
    cfg = Config(YamlStorage(path, env_prefix=ENV_PREFIX))
    crc_config.register_settings(cfg)
    preflight.register_settings(cfg, host_os)
    return cfg


def cmd_setup(cfg: Config, args: argparse.Namespace, host_os: HostOS) -> int:
    reporter = JsonStatusStream() if args.json else None
    preflight.setup_host(cfg, host_os, check_only=args.check_only, reporter=reporter)
    if args.check_only:
        log("SUCCESS", "Your system is correctly setup for using CRC")
    else:
        log("SUCCESS", "Your system is correctly setup for using CRC. Use 'crc start' to start the instance")
    return 0


def cmd_start(cfg: Config, args: argparse.Namespace, host_os: HostOS) -> int:
    reporter = JsonStatusStream() if args.json else None
    preflight.start_preflight_checks(cfg, host_os, reporter=reporter)
    log("SUCCESS", "Host preflight checks passed")
    return 0


def cmd_cleanup(cfg: Config, args: argparse.Namespace, host_os: HostOS) -> int:
    preflight.cleanup_host(cfg, host_os)
    log("SUCCESS", "Cleanup finished")
    return 0


def cmd_config(cfg: Config, args: argparse.Namespace, host_os: HostOS) -> int:
    if args.config_command == "set":
        message = cfg.set(args.key, args.value)
        if message:
            print(message)
    elif args.config_command == "unset":
        print(cfg.unset(args.key))
    elif args.config_command == "get":
        if not cfg.has_setting(args.key):
            raise ConfigError(f"Configuration property '{args.key}' does not exist")
        value = cfg.get(args.key)
        if value.is_default:
            print(f"Configuration property '{args.key}' is not set. Default value '{value.value}' is used")
        else:
            print(f"{args.key} : {value.value}")
    else:
        for key, value in sorted(cfg.all_configs().items()):
            if not value.is_default:
                print(f"- {key:<37}: {value.value}")
    return 0


COMMANDS = {
    "setup": cmd_setup,
    "start": cmd_start,
    "cleanup": cmd_cleanup,
    "config": cmd_config,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crc", description="Prepare the host for running a local OpenShift cluster")
    parser.add_argument("--version", action="version", version=f"crc version {VERSION}")
    parser.add_argument("--verbose", action="store_true", help="Print debug messages")
    parser.add_argument("--config", type=Path, default=CONFIG_PATH, help="Path of the crc config file")
    sub = parser.add_subparsers(dest="command", required=True)

    setup = sub.add_parser("setup", help="Set up prerequisites for using CRC")
    setup.add_argument("--check-only", action="store_true", help="Only run the preflight checks, don't try to fix any misconfiguration")
    setup.add_argument("--json", action="store_true", help="Report check results as JSON documents")

    start = sub.add_parser("start", help="Run the preflight checks needed before starting the instance")
    start.add_argument("--json", action="store_true", help="Report check results as JSON documents")

    sub.add_parser("cleanup", help="Undo config changes made by 'crc setup'")

    config = sub.add_parser("config", help="Modify crc configuration")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    config_set = config_sub.add_parser("set", help="Set a crc configuration property")
    config_set.add_argument("key")
    config_set.add_argument("value")
    config_get = config_sub.add_parser("get", help="Get a crc configuration property")
    config_get.add_argument("key")
    config_unset = config_sub.add_parser("unset", help="Unset a crc configuration property")
    config_unset.add_argument("key")
    config_sub.add_parser("view", help="Display all assigned crc configuration properties")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        set_verbose(True)

    try:
        host_os = detect_host_os()
        cfg = load_config(args.config, host_os)
        return COMMANDS[args.command](cfg, args, host_os)
    except MultiError as exc:
        # the cleanup engine already logged each failure
        log("ERROR", f"{len(exc.errors)} cleanup step(s) failed")
        return 1
    except CrcError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        log("ERROR", "This is likely a bug. Please report it at https://github.com/crc-org/crc/issues")
        import traceback

        traceback.print_exc()
        return 1
