"""
Enumeration types for filter and imputation policies.
"""

from enum import Enum


class _StrEnumMixin:
    @classmethod
    def from_str(cls, name: str):
        """Convert string to enum value (case-insensitive)."""
        name_ = str(name).lower().replace("-", "_").replace(" ", "_")
        for member in cls:
            if member.value == name_:
                return member
        valid = [m.value for m in cls]
        raise ValueError(f"Unknown {cls.__name__}: {name}. Valid options: {valid}")


class EmptyPartitionPolicy(_StrEnumMixin, Enum):
    """What to use as cutoff when a partition has no negative differences."""

    ZERO = "zero"  # cutoff = 0, i.e. keep any feature with diff > 0
    POOLED = "pooled"  # cutoff from all negative diffs of the same set in the batch


class InsufficientNeighborsPolicy(_StrEnumMixin, Enum):
    """What to do when fewer than k donors exist for an imputation target."""

    RAISE = "raise"
    EXCLUDE = "exclude"  # drop the feature and record it in the manifest
