"""Chat identity to target resolution."""

from chatledger.targets.resolver import (
    GroupNotFound,
    NotAMember,
    NotRegistered,
    TargetResolutionError,
    TargetResolver,
)

__all__ = [
    "GroupNotFound",
    "NotAMember",
    "NotRegistered",
    "TargetResolutionError",
    "TargetResolver",
]
