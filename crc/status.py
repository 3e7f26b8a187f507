"""Machine-readable progress stream for preflight runs (``--json``)."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from enum import Enum
from typing import IO, Optional


class State(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class CheckResult:
    preflight_type: str  # "check", "fix" or "cleanup"
    description: str
    state: State
    error: Optional[str] = None


class JsonStatusStream:
    """Print one JSON document per executed preflight step."""

    def __init__(self, stream: Optional[IO[str]] = None) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._next_id = 1

    def total(self, count: int) -> None:
        self._emit({"total": count})

    def report(self, result: CheckResult) -> None:
        self._emit(
            {
                "id": self._next_id,
                "type": result.preflight_type,
                "description": result.description,
                "result": result.state.value,
                "error": result.error,
            }
        )
        self._next_id += 1

    def _emit(self, payload: dict) -> None:
        self._stream.write(json.dumps(payload, indent=2) + "\n")
        self._stream.flush()
