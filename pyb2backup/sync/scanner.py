"""Tree walking utilities for sync operations."""

import logging
from dataclasses import dataclass

from ..source import SourceTreeProvider, join_source_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceEntry:
    """A file or directory found under a group root."""

    source_path: str
    """Path in the source tree, relative to the provider root"""

    target_path: str
    """Path relative to the group root (always forward slashes)"""

    is_directory: bool
    """Directories are listed but never uploaded"""


def to_target_path(source_path: str, root: str) -> str:
    """Strip the group root from a source path and normalize separators.

    Examples:
        >>> to_target_path("2020\\\\sub\\\\b.txt", "2020")
        'sub/b.txt'
        >>> to_target_path("2020/a.txt", "2020")
        'a.txt'
    """
    normalized = source_path.replace("\\", "/")
    prefix = root.replace("\\", "/").strip("/")
    if prefix and normalized.startswith(prefix + "/"):
        normalized = normalized[len(prefix) + 1 :]
    return normalized.lstrip("/")


class DirectoryWalker:
    """Flattens a source subtree into an ordered list of entries.

    The walk is depth-first: every child of a directory is emitted before
    the walker descends into that directory's subdirectories, first
    subdirectory first. An explicit stack replaces recursion so deep trees
    cannot hit the interpreter's recursion limit.

    Examples:
        >>> walker = DirectoryWalker(LocalTreeProvider(Path("/share")))
        >>> entries = walker.walk("2020")
        >>> [e.target_path for e in entries]
        ['a.txt', 'sub', 'sub/b.txt']
    """

    def __init__(self, provider: SourceTreeProvider):
        self.provider = provider

    def walk(self, root: str) -> list[SourceEntry]:
        """Enumerate everything under ``root``.

        Listing errors propagate unchanged; there are no retries and no
        partial results.
        """
        entries: list[SourceEntry] = []
        pending: list[str] = [root]

        while pending:
            directory = pending.pop()
            children = self.provider.list_children(directory)
            subdirectories: list[str] = []

            for child in children:
                source_path = join_source_path(directory, child.name)
                entries.append(
                    SourceEntry(
                        source_path=source_path,
                        target_path=to_target_path(source_path, root),
                        is_directory=child.is_directory,
                    )
                )
                if child.is_directory:
                    subdirectories.append(source_path)

            # Reversed so the first subdirectory is popped next
            pending.extend(reversed(subdirectories))

        logger.debug(f"Walked {root}: {len(entries)} entries")
        return entries
