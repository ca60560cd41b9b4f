"""
Role hierarchy and the plain permission guard.

The hierarchy is a total order over roles; who may edit what is decided
with the named comparisons here rather than raw integer arithmetic.
"""
from collections.abc import Iterable
from dataclasses import dataclass
from functools import total_ordering
from typing import Literal


@total_ordering
@dataclass(frozen=True)
class HierarchyLevel:
    """Position of a role in the hierarchy. Higher is more privileged."""
    value: int

    def __lt__(self, other: "HierarchyLevel") -> bool:
        if not isinstance(other, HierarchyLevel):
            return NotImplemented
        return self.value < other.value

    def is_strictly_above(self, other: "HierarchyLevel") -> bool:
        """True when this level may manage roles and users at ``other``."""
        return self.value > other.value

    def is_at_least(self, other: "HierarchyLevel") -> bool:
        return self.value >= other.value

    def __str__(self) -> str:
        return f"level {self.value}"


def authorize(
    effective: Iterable[str],
    required: Iterable[str],
    mode: Literal["all", "any"] = "all",
) -> bool:
    """
    Check a resolved permission set against required keys.

    Exact key matches only. An empty requirement is always satisfied.

    Usage:
        if not authorize(permissions, ["assets.read", "assets.assign"]):
            ...
    """
    granted = effective if isinstance(effective, (set, frozenset)) else set(effective)
    required = list(required)
    if not required:
        return True
    if mode == "any":
        return any(key in granted for key in required)
    if mode == "all":
        return all(key in granted for key in required)
    raise ValueError(f"Unknown authorization mode: {mode!r}")
