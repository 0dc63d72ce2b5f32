"""Sync groups: one top-level source directory mapped to one bucket."""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..source import SourceTreeProvider

logger = logging.getLogger(__name__)


class GroupFilter(str, Enum):
    """Which top-level directories of the share become sync groups."""

    ALL = "all"
    """Every top-level directory"""

    YEARS_ONLY = "filterNonYears"
    """Only directories whose name consists of ASCII digits (e.g. ``2020``)"""

    def matches(self, name: str) -> bool:
        """Check whether a top-level directory name passes this filter.

        Examples:
            >>> GroupFilter.YEARS_ONLY.matches("2020")
            True
            >>> GroupFilter.YEARS_ONLY.matches("Photos 2020")
            False
        """
        if self == GroupFilter.YEARS_ONLY:
            return name.isascii() and name.isdigit()
        return True

    @classmethod
    def from_string(cls, value: str) -> "GroupFilter":
        """Parse a filter name (case-insensitive).

        Raises:
            ValueError: If the name is unknown
        """
        for member in cls:
            if member.value.lower() == value.lower():
                return member
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown group filter {value!r} (expected one of: {valid})")


def bucket_name_for(share_name: str, root: str) -> str:
    """Bucket name a group is stored in.

    Examples:
        >>> bucket_name_for("photos", "2020")
        'photos-2020'
    """
    return f"{share_name}-{root}"


@dataclass(frozen=True)
class SyncGroup:
    """A source subtree and the bucket it is backed up to."""

    root: str
    """Top-level directory in the source tree"""

    bucket_name: str
    """Destination bucket"""

    @classmethod
    def for_share(cls, share_name: str, root: str) -> "SyncGroup":
        return cls(root=root, bucket_name=bucket_name_for(share_name, root))


def discover_groups(
    provider: SourceTreeProvider,
    share_name: str,
    group_filter: GroupFilter = GroupFilter.ALL,
    rng: Optional[random.Random] = None,
) -> list[SyncGroup]:
    """Find the top-level directories to back up, in random order.

    Only directories become groups. A missing share root yields no groups
    rather than an error.

    Args:
        provider: Source tree to probe
        share_name: Share identifier used to derive bucket names
        group_filter: Which top-level directories to keep
        rng: Random generator used for the shuffle

    Returns:
        Shuffled list of groups
    """
    children = provider.probe_children("")
    roots = sorted(
        child.name
        for child in children
        if child.is_directory and group_filter.matches(child.name)
    )
    (rng or random.Random()).shuffle(roots)
    logger.debug(f"Discovered {len(roots)} group(s): {roots}")
    return [SyncGroup.for_share(share_name, root) for root in roots]
