"""
Configuration management for prchangelog.

Resolves settings from, lowest precedence first:
- the origin remote in .git/config (host, project key, repository key)
- prchangelog.yml in the repository root
- pyproject.toml (release version)
- environment (BITBUCKET_USER, BITBUCKET_PSWD)
- command line options
"""

from __future__ import annotations

import logging
import os
import re
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from .changelog import DEFAULT_FILE, release_exists
from .issues import ISSUE_KEY_PATTERN, IssuePolicy
from .render import RenderOptions

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "prchangelog.yml"
DEFAULT_BASE_PATH = "/rest/api/1.0/projects"
DEFAULT_BRANCH = "master"


class ConfigError(Exception):
    """Configuration is incomplete or invalid."""


class ReleaseExistsError(ConfigError):
    """The release version already appears in the changelog."""
    def __init__(self, version: str):
        super().__init__(f"Release {version} was already found in changelog. Aborting.")
        self.version = version


class _ConfigLoader(yaml.SafeLoader):
    """SafeLoader that keeps decimal-looking scalars such as 1.10 as strings."""


_ConfigLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:float"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


@dataclass(frozen=True)
class ChangelogConfig:
    """Complete prchangelog configuration for one run."""
    version: str | None = None
    host: str | None = None  # e.g. https://bitbucket.example.com
    base_path: str = DEFAULT_BASE_PATH
    project_key: str | None = None
    repository_key: str | None = None
    branch: str = DEFAULT_BRANCH
    file: Path = Path(DEFAULT_FILE)
    overwrite: bool = False
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    issues: IssuePolicy = field(default_factory=IssuePolicy)
    render: RenderOptions = field(default_factory=RenderOptions)

    @property
    def base_url(self) -> str:
        return f"{self.host}{self.base_path}/{self.project_key}/repos/{self.repository_key}"

    def verify(self, existing: str = "") -> None:
        """
        Check that everything needed for a run is present.

        Args:
            existing: Current changelog contents

        Raises:
            ConfigError: If a required setting is missing
            ReleaseExistsError: If not overwriting and the version is already
                in the changelog
        """
        if not self.version:
            raise ConfigError(
                "Could not determine release version number. "
                "Is your pyproject.toml present, or pass --release-version."
            )
        if not self.username:
            raise ConfigError(
                "Please define username via `BITBUCKET_USER` env variable, or run in interactive mode."
            )
        if not self.password:
            raise ConfigError(
                "Please define password via `BITBUCKET_PSWD` env variable, or run in interactive mode."
            )
        if not self.host:
            raise ConfigError(f"Please define your bitbucket host in {CONFIG_FILENAME}.")
        if not self.project_key:
            raise ConfigError(f"Please define your bitbucket project_key in {CONFIG_FILENAME}.")
        if not self.repository_key:
            raise ConfigError(f"Please define your bitbucket repository_key in {CONFIG_FILENAME}.")
        if not isinstance(self.branch, str) or not self.branch:
            raise ConfigError("Please specify a branch name when using the --branch option.")

        if not self.overwrite and release_exists(existing, self.version):
            raise ReleaseExistsError(self.version)

    def to_log_dict(self) -> dict[str, Any]:
        """Settings suitable for logging (no password)."""
        data = asdict(self)
        data.pop("password", None)
        data["file"] = str(self.file)
        return data

    @classmethod
    def load(
        cls,
        repo_root: Path,
        *,
        version: str | None = None,
        branch: str | None = None,
        file: str | Path | None = None,
        overwrite: bool = False,
        username: str | None = None,
        password: str | None = None,
    ) -> "ChangelogConfig":
        """Load configuration from repo root directory, then apply overrides."""
        data: dict[str, Any] = {}
        data.update(read_git_remote(repo_root))

        config_path = repo_root / CONFIG_FILENAME
        if config_path.exists():
            file_data = read_config_file(config_path)
            data.update({k: v for k, v in file_data.items() if v is not None})

        config = cls._parse_config(data)

        changelog_file = Path(file) if file else config.file
        if not changelog_file.is_absolute():
            changelog_file = repo_root / changelog_file

        return cls(
            version=version or config.version or get_project_version(repo_root),
            host=config.host,
            base_path=config.base_path,
            project_key=config.project_key,
            repository_key=config.repository_key,
            branch=branch or config.branch,
            file=changelog_file.resolve(),
            overwrite=overwrite,
            username=username or os.environ.get("BITBUCKET_USER") or None,
            password=password or os.environ.get("BITBUCKET_PSWD") or None,
            issues=config.issues,
            render=config.render,
        )

    @classmethod
    def _parse_config(cls, data: dict[str, Any]) -> "ChangelogConfig":
        """Parse a configuration dictionary."""
        issues_data = data.get("issues", {}) or {}
        issues = IssuePolicy(
            pattern=issues_data.get("pattern", ISSUE_KEY_PATTERN),
            required=issues_data.get("required", True),
            url=issues_data.get("url") or data.get("issue_url"),
        )

        render_data = data.get("render", {}) or {}
        defaults = RenderOptions()
        render = RenderOptions(
            show_release_date=render_data.get("show_release_date", defaults.show_release_date),
            show_author=render_data.get("show_author", defaults.show_author),
            show_issues=render_data.get("show_issues", defaults.show_issues),
            show_pr_date=render_data.get("show_pr_date", defaults.show_pr_date),
            release_date_format=render_data.get("release_date_format", defaults.release_date_format),
            pr_date_format=render_data.get("pr_date_format", defaults.pr_date_format),
            indent=render_data.get("indent", defaults.indent),
        )

        host = data.get("host")
        return cls(
            version=_as_str(data.get("version")),
            host=host.rstrip("/") if host else None,
            base_path=data.get("base_path", DEFAULT_BASE_PATH),
            project_key=data.get("project_key"),
            repository_key=data.get("repository_key"),
            branch=_as_str(data.get("branch", DEFAULT_BRANCH)),
            file=Path(data.get("file", DEFAULT_FILE)),
            issues=issues,
            render=render,
        )


def read_config_file(path: Path) -> dict[str, Any]:
    """Read prchangelog.yml into a dictionary."""
    try:
        with open(path) as f:
            data = yaml.load(f, Loader=_ConfigLoader)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid {CONFIG_FILENAME}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {CONFIG_FILENAME}: expected a mapping, got {type(data).__name__}")
    return data


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_remote_url(url: str) -> dict[str, str]:
    """
    Split a Bitbucket clone url into host, project key and repository key.

    ``ssh://git@host:7999/proj/repo.git`` and
    ``https://host/scm/proj/repo.git`` both give
    ``{"host": "https://host", "project_key": "proj", "repository_key": "repo"}``.
    """
    parts = urlsplit(url)
    segments = [s for s in parts.path.split("/") if s]
    if not parts.hostname or len(segments) < 2:
        return {}

    repository_key = segments[-1]
    if repository_key.endswith(".git"):
        repository_key = repository_key[: -len(".git")]

    return {
        "host": f"https://{parts.hostname}",
        "project_key": segments[-2],
        "repository_key": repository_key,
    }


def read_git_remote(repo_root: Path) -> dict[str, str]:
    """Read remote details from .git/config; empty if unavailable."""
    git_config = repo_root / ".git" / "config"
    if not git_config.exists():
        return {}

    match = re.search(r"(https:|ssh:)\S+\.git$", git_config.read_text(), re.MULTILINE)
    if not match:
        logger.debug("No https/ssh remote found in %s", git_config)
        return {}

    return parse_remote_url(match.group(0))


def get_project_version(repo_root: Path) -> str | None:
    """Get the version from pyproject.toml ([project] or [tool.poetry])."""
    pyproject_path = repo_root / "pyproject.toml"
    if not pyproject_path.exists():
        return None

    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid pyproject.toml: {e}") from e

    version = data.get("project", {}).get("version")
    if version:
        return version
    return data.get("tool", {}).get("poetry", {}).get("version")


def get_repo_root() -> Path:
    """Find the repository root (directory containing .git)."""
    current = Path.cwd()
    while current != current.parent:
        if (current / ".git").exists():
            return current
        current = current.parent
    # No .git found, use current directory
    return Path.cwd()
