"""Applicability labels for preflight checks."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Union

from crc.models import HostOS, NetworkMode


class LabelName(Enum):
    OS = "os"
    NETWORK_MODE = "network-mode"


LabelValue = Union[HostOS, NetworkMode]
Labels = Mapping[LabelName, LabelValue]

NONE: Labels = {}


def os_label(host_os: HostOS) -> Dict[LabelName, LabelValue]:
    return {LabelName.OS: host_os}


def mode_label(host_os: HostOS, mode: NetworkMode) -> Dict[LabelName, LabelValue]:
    return {LabelName.OS: host_os, LabelName.NETWORK_MODE: mode}


class LabelFilter:
    """Keeps the checks whose labels agree with the current execution context.

    - a label present in the filter but not on the check keeps the check
    - a label present on the check but not in the filter keeps the check
    - a label present on both keeps the check only when the values match
    """

    def __init__(self, values: Optional[Mapping[LabelName, LabelValue]] = None) -> None:
        self.values: Dict[LabelName, LabelValue] = dict(values or {})

    @classmethod
    def for_context(cls, host_os: HostOS, network_mode: Optional[NetworkMode] = None) -> "LabelFilter":
        values: Dict[LabelName, LabelValue] = {LabelName.OS: host_os}
        if network_mode is not None:
            values[LabelName.NETWORK_MODE] = network_mode
        return cls(values)

    def matches(self, labels: Labels) -> bool:
        for name, value in self.values.items():
            if name in labels and labels[name] != value:
                return False
        return True

    def apply(self, checks: Iterable) -> List:
        return [check for check in checks if self.matches(check.labels)]
