"""Error definitions for k8s_deploy.

Every failure surfaced by the archive/build pipeline is a DeployError
subclass with a stable code, so callers can branch on the kind of
failure without parsing messages.
"""

from __future__ import annotations

# Error code constants
DIRECTORY_NOT_FOUND = "directory_not_found"
ARCHIVE_READ_ERROR = "archive_read_error"
DAEMON_UNREACHABLE = "daemon_unreachable"
EMPTY_DAEMON_RESPONSE = "empty_daemon_response"
DAEMON_REQUEST_ERROR = "daemon_request_error"
BUILD_CANCELLED = "build_cancelled"
UNSUPPORTED_ENDPOINT = "unsupported_endpoint"
INVALID_TAG = "invalid_tag"
CONFIGURATION_ERROR = "configuration_error"
VCS_ERROR = "vcs_error"


class DeployError(Exception):
    """Base class for all k8s_deploy errors."""

    default_code = "deploy_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        """Initialize DeployError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class DirectoryNotFoundError(DeployError):
    """Raised when the build context directory is missing or not a directory."""

    default_code = DIRECTORY_NOT_FOUND

    def __init__(self, path: str, message: str | None = None) -> None:
        super().__init__(message or f"Build context directory not found: {path}")
        self.path = path


class ArchiveReadError(DeployError):
    """Raised when an entry under the build context cannot be read."""

    default_code = ARCHIVE_READ_ERROR

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to read {path} while archiving: {reason}")
        self.path = path


class DaemonUnreachableError(DeployError):
    """Raised when no connection to the build daemon can be made."""

    default_code = DAEMON_UNREACHABLE

    def __init__(self, endpoint: str, reason: str) -> None:
        super().__init__(f"Cannot connect to build daemon at {endpoint}: {reason}")
        self.endpoint = endpoint


class EmptyDaemonResponseError(DeployError):
    """Raised when the daemon closes the build stream without sending a byte."""

    default_code = EMPTY_DAEMON_RESPONSE

    def __init__(self, tag: str) -> None:
        super().__init__(f"Build daemon returned no output while building {tag}")
        self.tag = tag


class DaemonRequestError(DeployError):
    """Raised when the daemon rejects the build request itself."""

    default_code = DAEMON_REQUEST_ERROR

    def __init__(
        self,
        tag: str,
        cause: str,
        status_code: int | None = None,
    ) -> None:
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Build daemon rejected build of {tag}{detail}: {cause}")
        self.tag = tag
        self.cause = cause
        self.status_code = status_code


class BuildCancelledError(DeployError):
    """Raised when a build is cancelled or exceeds its deadline."""

    default_code = BUILD_CANCELLED


class UnsupportedEndpointError(DeployError):
    """Raised when the daemon endpoint uses a scheme we cannot speak."""

    default_code = UNSUPPORTED_ENDPOINT


class InvalidTagError(DeployError):
    """Raised when an image tag has an invalid repository or version."""

    default_code = INVALID_TAG


class ConfigurationError(DeployError):
    """Raised when deploy configuration fails validation.

    Attributes:
        problems: One human-readable message per invalid field.
    """

    default_code = CONFIGURATION_ERROR

    def __init__(self, problems: list[str]) -> None:
        super().__init__("Invalid configuration: " + "; ".join(problems))
        self.problems = problems


class VersionControlError(DeployError):
    """Raised when the git repository exists but cannot be read."""

    default_code = VCS_ERROR


__all__ = [
    "ARCHIVE_READ_ERROR",
    "BUILD_CANCELLED",
    "CONFIGURATION_ERROR",
    "DAEMON_REQUEST_ERROR",
    "DAEMON_UNREACHABLE",
    "DIRECTORY_NOT_FOUND",
    "EMPTY_DAEMON_RESPONSE",
    "INVALID_TAG",
    "UNSUPPORTED_ENDPOINT",
    "VCS_ERROR",
    "ArchiveReadError",
    "BuildCancelledError",
    "ConfigurationError",
    "DaemonRequestError",
    "DaemonUnreachableError",
    "DeployError",
    "DirectoryNotFoundError",
    "EmptyDaemonResponseError",
    "InvalidTagError",
    "UnsupportedEndpointError",
    "VersionControlError",
]
