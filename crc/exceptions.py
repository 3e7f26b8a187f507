"""Custom exceptions for crc."""

from __future__ import annotations

from typing import Iterable, List


class CrcError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class ConfigError(CrcError):
    """Raised when a configuration property is unknown or gets an invalid value."""


class PreflightError(CrcError):
    """A preflight check (or its fix) failed and was not downgraded to a warning."""

    def __init__(self, description: str, cause: BaseException) -> None:
        super().__init__(f"{description}: {cause}")
        self.description = description
        self.cause = cause


class MultiError(CrcError):
    """Collects several independent failures, e.g. from cleanup steps."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors: List[BaseException] = list(errors)
        super().__init__("\n".join(str(err) for err in self.errors))
