"""Build daemon client.

This module handles:
- Parsing the daemon endpoint (unix socket, tcp, http/https)
- Submitting a build context archive with an image tag
- Streaming the daemon's response back as log lines
- Cancellation and deadline enforcement

The daemon speaks the Docker Engine HTTP API. Build failures reported
inside the log stream are passed through untouched; interpreting them is
up to the caller.
"""

from __future__ import annotations

import codecs
import contextlib
import json
import logging
import socket
import threading
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from k8s_deploy.errors import (
    BuildCancelledError,
    DaemonRequestError,
    DaemonUnreachableError,
    DeployError,
    EmptyDaemonResponseError,
    UnsupportedEndpointError,
)
from k8s_deploy.types import ImageTag, SubmissionState

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "unix:///var/run/docker.sock"

# Host used in request URLs when talking over a unix socket
UNIX_SOCKET_BASE_URL = "http://docker"

BUILD_PATH = "/build"

# Timeout for establishing the daemon connection (seconds)
CONNECT_TIMEOUT = 10.0

# Deadline for a whole build (seconds)
BUILD_TIMEOUT = 3600.0

# How often a streaming build checks for cancellation (seconds)
WATCH_INTERVAL = 0.1


@dataclass(frozen=True)
class DaemonEndpoint:
    """Where and how to reach the build daemon.

    Attributes:
        base_url: Base URL for HTTP requests.
        socket_path: Unix socket path, or None for TCP endpoints.
    """

    base_url: str
    socket_path: str | None = None


def parse_endpoint(endpoint: str) -> DaemonEndpoint:
    """Parse a daemon endpoint string.

    Accepts ``unix:///path/to.sock``, ``tcp://host:port``,
    ``http://host:port`` and ``https://host:port``.

    Args:
        endpoint: Endpoint string, as in DOCKER_HOST.

    Returns:
        DaemonEndpoint describing the connection.

    Raises:
        UnsupportedEndpointError: For unknown schemes or malformed values.
    """
    parts = urlsplit(endpoint)
    scheme = parts.scheme.lower()

    if scheme == "unix":
        if not parts.path:
            raise UnsupportedEndpointError(f"Missing socket path in endpoint: {endpoint}")
        return DaemonEndpoint(base_url=UNIX_SOCKET_BASE_URL, socket_path=parts.path)

    if scheme in ("tcp", "http", "https"):
        if not parts.netloc:
            raise UnsupportedEndpointError(f"Missing host in endpoint: {endpoint}")
        http_scheme = "http" if scheme == "tcp" else scheme
        path = parts.path.rstrip("/")
        return DaemonEndpoint(base_url=f"{http_scheme}://{parts.netloc}{path}")

    raise UnsupportedEndpointError(
        f"Unsupported build daemon endpoint: {endpoint} "
        "(expected unix://, tcp://, http:// or https://)"
    )


def _error_message(response: httpx.Response) -> str:
    """Extract the daemon's error message from a failed response."""
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None

    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.text.strip() or response.reason_phrase


def _interrupt(response: httpx.Response) -> None:
    """Abort a streaming response, waking a thread blocked reading it."""
    stream = response.extensions.get("network_stream")
    sock = stream.get_extra_info("socket") if stream is not None else None
    if sock is None:
        response.close()
        return
    # Already closed sockets raise; the reader sees EOF either way
    with contextlib.suppress(OSError):
        sock.shutdown(socket.SHUT_RDWR)


def split_lines(chunks: Iterable[bytes]) -> Iterator[str]:
    """Split a byte stream into lines.

    Only ``\\n`` ends a line. One trailing ``\\r`` is dropped from each
    line; carriage returns inside a line (progress output) are kept.
    A final line without a terminator is still yielded.

    Args:
        chunks: Raw response bytes, split arbitrarily.

    Yields:
        Decoded lines without terminators.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    for chunk in chunks:
        pending += decoder.decode(chunk)
        *lines, pending = pending.split("\n")
        for line in lines:
            yield line.removesuffix("\r")

    pending += decoder.decode(b"", final=True)
    if pending:
        yield pending.removesuffix("\r")


class BuildSubmitter:
    """Submit build contexts to a build daemon and stream back its output.

    Each submission opens its own connection; nothing is shared between
    submissions. ``state`` reflects the progress of the latest one.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float | None = BUILD_TIMEOUT,
        connect_timeout: float = CONNECT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize BuildSubmitter.

        Args:
            endpoint: Daemon endpoint, e.g. ``unix:///var/run/docker.sock``.
            timeout: Deadline in seconds for a whole submission (None = no deadline).
            connect_timeout: Timeout in seconds for connecting to the daemon.
            transport: Optional HTTPX transport, overriding the endpoint's.

        Raises:
            UnsupportedEndpointError: If the endpoint cannot be parsed.
        """
        self.endpoint = endpoint
        self._daemon = parse_endpoint(endpoint)
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self._transport = transport
        self.state = SubmissionState.IDLE

    def _client(self) -> httpx.Client:
        transport = self._transport
        if transport is None:
            transport = httpx.HTTPTransport(uds=self._daemon.socket_path)

        return httpx.Client(
            base_url=self._daemon.base_url,
            transport=transport,
            timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout),
        )

    @staticmethod
    def _check_cancelled(
        tag: str,
        cancel: threading.Event | None,
        deadline: float | None,
    ) -> None:
        if cancel is not None and cancel.is_set():
            raise BuildCancelledError(f"Build of {tag} was cancelled")
        if deadline is not None and time.monotonic() > deadline:
            raise BuildCancelledError(f"Build of {tag} exceeded its deadline")

    def _upload(
        self,
        archive: Iterable[bytes],
        tag: str,
        cancel: threading.Event | None,
        deadline: float | None,
    ) -> Iterator[bytes]:
        self.state = SubmissionState.SENDING
        sent = 0
        for chunk in archive:
            self._check_cancelled(tag, cancel, deadline)
            sent += len(chunk)
            yield chunk
        logger.debug("Uploaded %d bytes of build context for %s", sent, tag)

    def _watch(
        self,
        response: httpx.Response,
        cancel: threading.Event | None,
        deadline: float | None,
        done: threading.Event,
    ) -> threading.Thread | None:
        """Interrupt ``response`` from another thread on cancel or deadline.

        A silent daemon leaves the reading thread blocked in the socket,
        so the connection is shut down underneath it.
        """
        if cancel is None and deadline is None:
            return None

        def run() -> None:
            while not done.wait(WATCH_INTERVAL):
                cancelled = cancel is not None and cancel.is_set()
                expired = deadline is not None and time.monotonic() > deadline
                if cancelled or expired:
                    logger.debug("Interrupting build response")
                    _interrupt(response)
                    return

        watcher = threading.Thread(target=run, name="build-cancel-watch", daemon=True)
        watcher.start()
        return watcher

    def iter_build_log(
        self,
        archive: Iterable[bytes],
        tag: ImageTag,
        cancel: threading.Event | None = None,
    ) -> Iterator[str]:
        """Submit a build and lazily yield the daemon's output lines.

        The iterator is single-use. Lines are yielded as the daemon emits
        them; the connection is closed when the iterator is exhausted,
        fails, or is closed early.

        Args:
            archive: Build context archive chunks (gzip-compressed tar).
            tag: Image tag to build.
            cancel: Optional event; setting it aborts the submission.

        Yields:
            Build log lines, in emission order, without line terminators.

        Raises:
            DaemonUnreachableError: If the daemon cannot be connected to.
            DaemonRequestError: If the daemon rejects the request or the
                transfer breaks.
            EmptyDaemonResponseError: If the daemon sends no bytes at all.
            BuildCancelledError: On cancellation or deadline expiry.
        """
        tag_str = str(tag)
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        done = threading.Event()
        watcher: threading.Thread | None = None
        line_count = 0

        self.state = SubmissionState.CONNECTING
        logger.info("Submitting build of %s to %s", tag_str, self.endpoint)

        try:
            with self._client() as client, client.stream(
                "POST",
                BUILD_PATH,
                params={"t": tag_str},
                headers={"Content-Type": "application/x-tar"},
                content=self._upload(archive, tag_str, cancel, deadline),
            ) as response:
                self.state = SubmissionState.STREAMING

                if response.is_error:
                    response.read()
                    raise DaemonRequestError(
                        tag_str, _error_message(response), response.status_code
                    )

                watcher = self._watch(response, cancel, deadline, done)
                received = 0

                def chunks() -> Iterator[bytes]:
                    nonlocal received
                    for chunk in response.iter_bytes():
                        received += len(chunk)
                        yield chunk

                for line in split_lines(chunks()):
                    self._check_cancelled(tag_str, cancel, deadline)
                    line_count += 1
                    yield line

                # An interrupted connection-delimited body ends like a normal one
                self._check_cancelled(tag_str, cancel, deadline)
                if received == 0:
                    raise EmptyDaemonResponseError(tag_str)
                self.state = SubmissionState.COMPLETED

        except httpx.ConnectError as e:
            self.state = SubmissionState.FAILED
            raise DaemonUnreachableError(self.endpoint, str(e)) from e
        except httpx.ConnectTimeout as e:
            self.state = SubmissionState.FAILED
            raise DaemonUnreachableError(self.endpoint, "connection timed out") from e
        except httpx.TimeoutException as e:
            self.state = SubmissionState.FAILED
            raise BuildCancelledError(f"Build of {tag_str} timed out: {e}") from e
        except httpx.HTTPError as e:
            self.state = SubmissionState.FAILED
            self._check_cancelled(tag_str, cancel, deadline)
            raise DaemonRequestError(tag_str, str(e) or type(e).__name__) from e
        except DeployError:
            self.state = SubmissionState.FAILED
            raise
        finally:
            done.set()
            if watcher is not None:
                watcher.join()
            if self.state not in (SubmissionState.COMPLETED, SubmissionState.FAILED):
                # Closed early by the consumer
                self.state = SubmissionState.FAILED
                logger.debug("Build log of %s closed before completion", tag_str)

        logger.info("Build of %s finished with %d log lines", tag_str, line_count)

    def submit(
        self,
        archive: Iterable[bytes],
        tag: ImageTag,
        cancel: threading.Event | None = None,
    ) -> list[str]:
        """Submit a build and return its complete output.

        Args:
            archive: Build context archive chunks (gzip-compressed tar).
            tag: Image tag to build.
            cancel: Optional event; setting it aborts the submission.

        Returns:
            All build log lines in emission order.

        Raises:
            DeployError: Any of the errors raised by iter_build_log.
        """
        return list(self.iter_build_log(archive, tag, cancel=cancel))


__all__ = [
    "BUILD_PATH",
    "BUILD_TIMEOUT",
    "CONNECT_TIMEOUT",
    "DEFAULT_ENDPOINT",
    "BuildSubmitter",
    "DaemonEndpoint",
    "parse_endpoint",
    "split_lines",
]
