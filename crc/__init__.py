"""crc host preflight package."""

__all__ = [
    "catalog",
    "checks",
    "checks_common",
    "checks_darwin",
    "checks_linux",
    "checks_network_linux",
    "checks_windows",
    "cli",
    "config",
    "constants",
    "exceptions",
    "labels",
    "models",
    "network",
    "preflight",
    "runtime",
    "services",
    "status",
    "utils",
]
