"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from k8s_deploy import config as config_module
from k8s_deploy.config import (
    DEFAULT_DOCKER_HOST,
    DeployConfig,
    Settings,
    get_settings,
    load_deploy_config,
    print_settings_json,
    resolve_version,
)
from k8s_deploy.errors import CONFIGURATION_ERROR, ConfigurationError
from k8s_deploy.types import ImageTag, VersionSource


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove daemon endpoint variables inherited from the test environment."""
    monkeypatch.delenv("DOCKER_HOST", raising=False)
    monkeypatch.delenv("K8S_DEPLOY_DOCKER_HOST", raising=False)


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert settings.docker_host == DEFAULT_DOCKER_HOST
        assert settings.docker_host == "unix:///var/run/docker.sock"
        assert settings.log_level == "INFO"
        assert settings.build_timeout >= 1
        assert settings.connect_timeout > 0
        assert settings.read_chunk_size >= 1024

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "K8S_DEPLOY_LOG_LEVEL": "DEBUG",
                "K8S_DEPLOY_BUILD_TIMEOUT": "120",
                "K8S_DEPLOY_DOCKER_HOST": "tcp://10.0.0.5:2375",
            },
        ):
            settings = Settings()
            assert settings.log_level == "DEBUG"
            assert settings.build_timeout == 120
            assert settings.docker_host == "tcp://10.0.0.5:2375"

    def test_docker_host_env(self) -> None:
        """The standard DOCKER_HOST variable should be honoured."""
        with patch.dict(os.environ, {"DOCKER_HOST": "unix:///run/user/1000/docker.sock"}):
            settings = Settings()
            assert settings.docker_host == "unix:///run/user/1000/docker.sock"

    def test_docker_host_keyword(self) -> None:
        """docker_host should be settable by field name."""
        settings = Settings(docker_host="tcp://daemon:2375")
        assert settings.docker_host == "tcp://daemon:2375"


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)

    def test_invalid_env_value(self) -> None:
        """Invalid environment values should raise ConfigurationError."""
        with patch.dict(os.environ, {"K8S_DEPLOY_BUILD_TIMEOUT": "soon"}):
            with pytest.raises(ConfigurationError) as exc_info:
                get_settings()

        assert exc_info.value.code == CONFIGURATION_ERROR
        assert len(exc_info.value.problems) == 1
        assert exc_info.value.problems[0].startswith("build_timeout: ")


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        settings = Settings()
        parsed = json.loads(print_settings_json(settings))

        assert parsed["docker_host"] == DEFAULT_DOCKER_HOST
        assert "build_timeout" in parsed
        assert "log_level" in parsed

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        parsed = json.loads(print_settings_json())
        assert "docker_host" in parsed


class TestDeployConfig:
    """Test DeployConfig validation."""

    def test_valid_config(self, tmp_path: Path) -> None:
        """A valid config should expose its image tag."""
        cfg = DeployConfig(
            container_repo="acme/app", container_dir=tmp_path, version="abc123"
        )
        assert cfg.image_tag == ImageTag(repository="acme/app", version="abc123")
        assert cfg.version_source is VersionSource.FLAG

    def test_repo_without_owner(self, tmp_path: Path) -> None:
        """Repository must be owner/name."""
        with pytest.raises(ValueError, match="owner/name"):
            DeployConfig(container_repo="app", container_dir=tmp_path, version="v1")

    def test_empty_repo(self, tmp_path: Path) -> None:
        """Repository cannot be empty."""
        with pytest.raises(ValueError, match="cannot be empty"):
            DeployConfig(container_repo="", container_dir=tmp_path, version="v1")

    def test_missing_dir(self, tmp_path: Path) -> None:
        """Container directory must exist."""
        with pytest.raises(ValueError, match="does not exist"):
            DeployConfig(
                container_repo="acme/app",
                container_dir=tmp_path / "missing",
                version="v1",
            )

    def test_dir_is_file(self, tmp_path: Path) -> None:
        """Container directory must be a directory."""
        file_path = tmp_path / "Dockerfile"
        file_path.write_text("FROM scratch\n")
        with pytest.raises(ValueError, match="not a directory"):
            DeployConfig(container_repo="acme/app", container_dir=file_path, version="v1")

    def test_empty_version(self, tmp_path: Path) -> None:
        """Version cannot be empty."""
        with pytest.raises(ValueError, match="version"):
            DeployConfig(container_repo="acme/app", container_dir=tmp_path, version="")


class TestResolveVersion:
    """Test resolve_version precedence."""

    def test_flag_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """An explicit flag value should win over git."""
        monkeypatch.setattr(config_module, "head_commit_hash", lambda path: "deadbeef")
        resolution = resolve_version("v1.2.3", tmp_path)
        assert resolution.value == "v1.2.3"
        assert resolution.source is VersionSource.FLAG

    def test_falls_back_to_vcs(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Without a flag the git HEAD hash should be used."""
        monkeypatch.setattr(config_module, "head_commit_hash", lambda path: "deadbeef")
        resolution = resolve_version(None, tmp_path)
        assert resolution.value == "deadbeef"
        assert resolution.source is VersionSource.VCS

    def test_empty_flag_falls_back(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """An empty flag value should be treated as not given."""
        monkeypatch.setattr(config_module, "head_commit_hash", lambda path: "cafe")
        assert resolve_version("", tmp_path).source is VersionSource.VCS

    def test_no_version_control(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Outside version control the version should resolve to empty."""
        monkeypatch.setattr(config_module, "head_commit_hash", lambda path: None)
        resolution = resolve_version(None, tmp_path)
        assert resolution.value == ""
        assert resolution.source is VersionSource.NONE


class TestLoadDeployConfig:
    """Test load_deploy_config function."""

    def test_load_with_flag(self, tmp_path: Path) -> None:
        """Should build a config from explicit values."""
        cfg = load_deploy_config("acme/app", tmp_path, "abc123")
        assert str(cfg.image_tag) == "acme/app:abc123"

    def test_load_from_vcs(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should record that the version came from git."""
        monkeypatch.setattr(config_module, "head_commit_hash", lambda path: "0123abcd")
        cfg = load_deploy_config("acme/app", tmp_path)
        assert cfg.version == "0123abcd"
        assert cfg.version_source is VersionSource.VCS

    def test_collects_all_problems(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Should report every invalid field at once."""
        monkeypatch.setattr(config_module, "head_commit_hash", lambda path: None)
        with pytest.raises(ConfigurationError) as exc_info:
            load_deploy_config("app", tmp_path / "missing")

        error = exc_info.value
        assert error.code == CONFIGURATION_ERROR
        assert len(error.problems) == 3
        assert any("owner/name" in p for p in error.problems)
        assert any("does not exist" in p for p in error.problems)
        assert any("version" in p for p in error.problems)
