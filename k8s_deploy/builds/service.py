"""Build service.

This module handles:
- Composing build context archival with daemon submission
- Decoding JSON build messages for callers that want structure
- Locating build failures reported inside the log stream

The archive is streamed straight into the daemon request, so archival
and upload overlap and the context is never fully buffered.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from k8s_deploy.builds.archive import archive_directory
from k8s_deploy.builds.daemon import BuildSubmitter
from k8s_deploy.config import Settings, get_settings
from k8s_deploy.types import ImageTag

logger = logging.getLogger(__name__)


@dataclass
class BuildEvent:
    """A single message from the build daemon.

    Attributes:
        raw: The line as received.
        stream: Build output text (``stream`` field), if any.
        status: Progress status (``status`` field), if any.
        error: Error message reported by the build, if any.
        aux: Auxiliary payload, e.g. the built image ID.
        extra: Any other fields of a JSON message.
    """

    raw: str
    stream: str | None = None
    status: str | None = None
    error: str | None = None
    aux: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        """Whether this message reports a build failure."""
        return self.error is not None

    @property
    def text(self) -> str:
        """Human-readable text of the message."""
        if self.error is not None:
            return self.error
        if self.stream is not None:
            return self.stream.rstrip("\n")
        if self.status is not None:
            return self.status
        return self.raw


def decode_build_event(line: str) -> BuildEvent:
    """Decode one daemon log line.

    Lines that are not JSON objects are returned with only ``raw`` set.

    Args:
        line: A line from the build log.

    Returns:
        BuildEvent for the line.
    """
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return BuildEvent(raw=line)

    if not isinstance(payload, dict):
        return BuildEvent(raw=line)

    error = payload.pop("error", None)
    error_detail = payload.pop("errorDetail", None)
    if error is None and isinstance(error_detail, dict):
        error = error_detail.get("message")

    aux = payload.pop("aux", None)
    return BuildEvent(
        raw=line,
        stream=payload.pop("stream", None),
        status=payload.pop("status", None),
        error=str(error) if error is not None else None,
        aux=aux if isinstance(aux, dict) else None,
        extra=payload,
    )


def find_build_error(lines: Iterable[str]) -> str | None:
    """Return the first build error reported in a build log.

    Args:
        lines: Build log lines.

    Returns:
        The error message, or None if the log reports no error.
    """
    for line in lines:
        event = decode_build_event(line)
        if event.is_error:
            return event.text
    return None


def stream_build(
    directory: Path,
    tag: ImageTag,
    settings: Settings | None = None,
    cancel: threading.Event | None = None,
    submitter: BuildSubmitter | None = None,
) -> Iterator[str]:
    """Start a container build and stream its log lines.

    The directory is checked before anything is sent; archival then runs
    lazily while the request body is uploaded.

    Args:
        directory: Build context directory containing the Dockerfile.
        tag: Image tag to build.
        settings: Optional settings; uses defaults if not provided.
        cancel: Optional event; setting it aborts the build.
        submitter: Optional submitter; one is created from settings if not given.

    Returns:
        Single-use iterator over build log lines.

    Raises:
        DirectoryNotFoundError: If directory is missing.
    """
    if settings is None:
        settings = get_settings()

    if submitter is None:
        submitter = BuildSubmitter(
            endpoint=settings.docker_host,
            timeout=settings.build_timeout,
            connect_timeout=settings.connect_timeout,
        )

    archive = archive_directory(directory, chunk_size=settings.read_chunk_size)

    logger.info("Building %s from %s", tag, directory)
    return submitter.iter_build_log(archive, tag, cancel=cancel)


def build_container(
    directory: Path,
    tag: ImageTag,
    settings: Settings | None = None,
    cancel: threading.Event | None = None,
    submitter: BuildSubmitter | None = None,
) -> list[str]:
    """Build a container image from a directory.

    Archives ``directory`` as the build context and builds it on the
    daemon, tagged ``tag``.

    Args:
        directory: Build context directory containing the Dockerfile.
        tag: Image tag to build.
        settings: Optional settings; uses defaults if not provided.
        cancel: Optional event; setting it aborts the build.
        submitter: Optional submitter; one is created from settings if not given.

    Returns:
        All build log lines in emission order.

    Raises:
        DirectoryNotFoundError: If directory is missing.
        ArchiveReadError: If a context file cannot be read.
        DeployError: Any submission error from BuildSubmitter.
    """
    lines = list(
        stream_build(
            directory, tag, settings=settings, cancel=cancel, submitter=submitter
        )
    )
    logger.debug("Received %d build log lines for %s", len(lines), tag)
    return lines


__all__ = [
    "BuildEvent",
    "build_container",
    "decode_build_event",
    "find_build_error",
    "stream_build",
]
