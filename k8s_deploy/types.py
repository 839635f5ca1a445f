"""Shared type definitions for k8s_deploy.

This module contains dataclasses and enums shared across subpackages
to avoid circular imports.
"""

import re
from dataclasses import dataclass
from enum import Enum

from k8s_deploy.errors import InvalidTagError

# Repository must be in "owner/name" form
REPOSITORY_PATTERN = re.compile(r"^.+/.+$")


class EntryType(str, Enum):
    """Type of a build context archive entry."""

    FILE = "file"
    DIR = "dir"
    SYMLINK = "symlink"


class SubmissionState(str, Enum):
    """State of a build submission."""

    IDLE = "idle"
    CONNECTING = "connecting"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class VersionSource(str, Enum):
    """Where the deployment version came from."""

    FLAG = "flag"
    VCS = "vcs"
    NONE = "none"


@dataclass(frozen=True)
class ImageTag:
    """Container image tag, serialized as ``repository:version``."""

    repository: str
    version: str

    def __post_init__(self) -> None:
        """Validate repository and version."""
        if not self.repository:
            raise InvalidTagError("repository cannot be empty")
        if not REPOSITORY_PATTERN.match(self.repository):
            raise InvalidTagError(
                f'repository must be in format "owner/name", was: "{self.repository}"'
            )
        if not self.version:
            raise InvalidTagError("version cannot be empty")

    def __str__(self) -> str:
        return f"{self.repository}:{self.version}"


@dataclass(frozen=True)
class ContextEntry:
    """One entry of a build context archive.

    Attributes:
        relative_path: POSIX path relative to the archived root ("." for the root).
        entry_type: File, directory, or symlink.
        mode: Permission bits.
        size: Content size in bytes (0 for directories and symlinks).
        link_target: Symlink target, for symlinks only.
    """

    relative_path: str
    entry_type: EntryType
    mode: int
    size: int = 0
    link_target: str | None = None


@dataclass
class VersionResolution:
    """Resolved deployment version and where it came from."""

    value: str
    source: VersionSource


__all__ = [
    "REPOSITORY_PATTERN",
    "ContextEntry",
    "EntryType",
    "ImageTag",
    "SubmissionState",
    "VersionResolution",
    "VersionSource",
]
