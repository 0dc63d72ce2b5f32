"""Source tree providers: where the files to back up come from."""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol

from .exceptions import SourceError, SourceNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceChild:
    """One entry of a directory listing."""

    name: str
    """Entry name (no directory component)"""

    is_directory: bool
    """True for directories"""


class SourceTreeProvider(Protocol):
    """Read-only view of a hierarchical file tree.

    Paths are relative to the provider root and use ``/`` as separator.
    The empty string is the root itself.
    """

    def list_children(self, path: str) -> list[SourceChild]:
        """List a directory. Raises SourceNotFoundError if it does not exist."""
        ...

    def open_for_read(self, path: str) -> BinaryIO:
        """Open a file for binary reading."""
        ...

    def probe_children(self, path: str) -> list[SourceChild]:
        """Like list_children, but an absent directory lists as empty."""
        ...


def join_source_path(parent: str, name: str) -> str:
    """Join a provider-relative directory and a child name.

    Examples:
        >>> join_source_path("", "2020")
        '2020'
        >>> join_source_path("2020", "a.txt")
        '2020/a.txt'
    """
    return f"{parent}/{name}" if parent else name


def _is_missing(error: OSError) -> bool:
    return isinstance(error, FileNotFoundError) or error.errno == errno.ENOENT


class LocalTreeProvider:
    """Serves a local or already-mounted directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        return self.root / path if path else self.root

    def list_children(self, path: str) -> list[SourceChild]:
        directory = self._resolve(path)
        try:
            children = [
                SourceChild(name=item.name, is_directory=item.is_dir())
                for item in directory.iterdir()
            ]
        except OSError as e:
            if _is_missing(e):
                raise SourceNotFoundError(f"Directory not found: {path or '/'}") from e
            raise SourceError(f"Failed to list {path or '/'}: {e}") from e
        return sorted(children, key=lambda child: child.name)

    def open_for_read(self, path: str) -> BinaryIO:
        try:
            return open(self._resolve(path), "rb")
        except OSError as e:
            if _is_missing(e):
                raise SourceNotFoundError(f"File not found: {path}") from e
            raise SourceError(f"Failed to open {path}: {e}") from e

    def probe_children(self, path: str) -> list[SourceChild]:
        try:
            return self.list_children(path)
        except SourceNotFoundError:
            logger.debug(f"Probed missing directory {path or '/'}")
            return []


class SmbTreeProvider:
    """Serves a share over SMB2/3 using smbprotocol's ``smbclient`` module.

    Args:
        share_url: Share location as ``//server/share``
        username: SMB user name (``guest`` when empty)
        password: SMB password
        domain: SMB domain / workgroup
    """

    def __init__(
        self,
        share_url: str,
        username: str = "guest",
        password: str = "",
        domain: str = "WORKGROUP",
    ):
        import smbclient

        self._smbclient = smbclient
        self.server, self.share = parse_share_url(share_url)
        self.username = username or "guest"
        self.domain = domain
        try:
            smbclient.register_session(
                self.server,
                username=f"{domain}\\{self.username}" if domain else self.username,
                password=password or None,
            )
        except Exception as e:
            raise SourceError(f"Failed to connect to {self.server}: {e}") from e

    @property
    def share_name(self) -> str:
        return self.share

    def _unc(self, path: str) -> str:
        unc = f"\\\\{self.server}\\{self.share}"
        if path:
            unc += "\\" + path.replace("/", "\\")
        return unc

    def list_children(self, path: str) -> list[SourceChild]:
        try:
            entries = [
                SourceChild(name=entry.name, is_directory=entry.is_dir())
                for entry in self._smbclient.scandir(self._unc(path))
                if entry.name not in (".", "..")
            ]
        except OSError as e:
            if _is_missing(e):
                raise SourceNotFoundError(f"Directory not found: {path or '/'}") from e
            raise SourceError(f"Failed to list {path or '/'}: {e}") from e
        return sorted(entries, key=lambda child: child.name)

    def open_for_read(self, path: str) -> BinaryIO:
        try:
            return self._smbclient.open_file(self._unc(path), mode="rb")
        except OSError as e:
            if _is_missing(e):
                raise SourceNotFoundError(f"File not found: {path}") from e
            raise SourceError(f"Failed to open {path}: {e}") from e

    def probe_children(self, path: str) -> list[SourceChild]:
        try:
            return self.list_children(path)
        except SourceNotFoundError:
            logger.debug(f"Probed missing directory {path or '/'}")
            return []


def parse_share_url(share_url: str) -> tuple[str, str]:
    """Split ``//server/share`` (or ``\\\\server\\share``) into its parts.

    Examples:
        >>> parse_share_url("//192.168.1.2/photos")
        ('192.168.1.2', 'photos')
    """
    normalized = share_url.replace("\\", "/").strip("/")
    parts = [part for part in normalized.split("/") if part]
    if len(parts) != 2:
        raise ValueError(f"Expected //server/share, got {share_url!r}")
    return parts[0], parts[1]
