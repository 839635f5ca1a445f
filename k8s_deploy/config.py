"""Configuration settings for k8s_deploy.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Deploy inputs (repository, directory, version) are validated separately
by DeployConfig, since they change on every invocation.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from k8s_deploy.errors import ConfigurationError
from k8s_deploy.types import (
    REPOSITORY_PATTERN,
    ImageTag,
    VersionResolution,
    VersionSource,
)
from k8s_deploy.vcs import head_commit_hash

logger = logging.getLogger(__name__)

DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the K8S_DEPLOY_
    prefix. The daemon endpoint also honours the standard DOCKER_HOST
    variable. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="K8S_DEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    docker_host: str = Field(
        default=DEFAULT_DOCKER_HOST,
        validation_alias=AliasChoices(
            "docker_host", "K8S_DEPLOY_DOCKER_HOST", "DOCKER_HOST"
        ),
        description="Build daemon endpoint (unix://, tcp://, http:// or https://)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for connecting to the build daemon",
    )
    build_timeout: int = Field(
        default=3600,
        ge=1,
        description="Deadline for a whole build, upload and log streaming",
    )

    # Streaming
    read_chunk_size: int = Field(
        default=64 * 1024,
        ge=1024,
        description="Chunk size used when reading build context files",
    )


def _validation_problems(error: ValidationError, with_field: bool = False) -> list[str]:
    problems = []
    for err in error.errors():
        message = str(err["msg"]).removeprefix("Value error, ")
        if with_field and err["loc"]:
            message = f"{'.'.join(str(part) for part in err['loc'])}: {message}"
        problems.append(message)
    return problems


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ConfigurationError: If an environment value is invalid.
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(_validation_problems(e, with_field=True)) from e


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


class DeployConfig(BaseModel):
    """Validated inputs for one deployment."""

    model_config = ConfigDict(frozen=True)

    container_repo: str = Field(
        description="Repository container images are pushed to, owner/name",
    )
    container_dir: Path = Field(
        description="Directory containing the container Dockerfile",
    )
    version: str = Field(
        description="Release version, used as the container image tag",
    )
    version_source: VersionSource = VersionSource.FLAG

    @field_validator("container_repo")
    @classmethod
    def check_container_repo(cls, value: str) -> str:
        if not value:
            raise ValueError("container-repo value cannot be empty")
        if not REPOSITORY_PATTERN.match(value):
            raise ValueError(
                f'container-repo value must be in format "owner/name", was: "{value}"'
            )
        return value

    @field_validator("container_dir")
    @classmethod
    def check_container_dir(cls, value: Path) -> Path:
        if not str(value):
            raise ValueError("container-dir value cannot be empty")
        if not value.exists():
            raise ValueError(f'container-dir "{value}" does not exist')
        if not value.is_dir():
            raise ValueError(f'container-dir "{value}" is not a directory')
        return value

    @field_validator("version")
    @classmethod
    def check_version(cls, value: str) -> str:
        if not value:
            raise ValueError(
                "version value cannot be empty; pass one explicitly when not "
                "running inside a git repository"
            )
        return value

    @property
    def image_tag(self) -> ImageTag:
        """Image tag composed from repository and version."""
        return ImageTag(repository=self.container_repo, version=self.version)


def resolve_version(flag_value: str | None, repo_path: Path) -> VersionResolution:
    """Resolve the deployment version.

    An explicit flag value always wins. Otherwise the HEAD commit hash of
    the git repository containing ``repo_path`` is used. Outside version
    control the version resolves to an empty string.

    Args:
        flag_value: Version given on the command line, if any.
        repo_path: Directory used to locate the git repository.

    Returns:
        VersionResolution with value and source.
    """
    if flag_value:
        return VersionResolution(value=flag_value, source=VersionSource.FLAG)

    sha = head_commit_hash(repo_path)
    if sha:
        return VersionResolution(value=sha, source=VersionSource.VCS)

    return VersionResolution(value="", source=VersionSource.NONE)


def load_deploy_config(
    container_repo: str,
    container_dir: Path,
    version: str | None = None,
) -> DeployConfig:
    """Build a validated DeployConfig.

    Args:
        container_repo: Repository in owner/name form.
        container_dir: Build context directory.
        version: Explicit version; defaults to the git HEAD hash.

    Returns:
        Validated DeployConfig.

    Raises:
        ConfigurationError: If any field is invalid.
        VersionControlError: If the git repository cannot be read.
    """
    resolution = resolve_version(version, container_dir)
    logger.debug(
        "Resolved version %r from %s", resolution.value, resolution.source.value
    )

    try:
        return DeployConfig(
            container_repo=container_repo,
            container_dir=container_dir,
            version=resolution.value,
            version_source=resolution.source,
        )
    except ValidationError as e:
        raise ConfigurationError(_validation_problems(e)) from e


__all__ = [
    "DEFAULT_DOCKER_HOST",
    "DeployConfig",
    "Settings",
    "get_settings",
    "load_deploy_config",
    "print_settings_json",
    "resolve_version",
]
