"""
prchangelog CLI - Build a changelog from Bitbucket tags and merged pull requests.

Commands:
    init      - Write a sample prchangelog.yml in the current repository
    generate  - Generate the changelog for the current version
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sys

import click
from dotenv import load_dotenv

from . import __version__
from .bitbucket import BitbucketAPIError, BitbucketClient
from .changelog import read_changelog, write_changelog
from .config import CONFIG_FILENAME, ChangelogConfig, ConfigError, get_repo_root
from .issues import MissingIssueReferenceError
from .releases import build_releases
from .render import render_releases

logger = logging.getLogger(__name__)


SAMPLE_CONFIG = """\
# prchangelog configuration
# host, project_key and repository_key are read from the origin remote
# in .git/config when not set here.

# host: https://bitbucket.example.com
# base_path: /rest/api/1.0/projects
# project_key: PROJ
# repository_key: my-repo

branch: master        # Branch pull requests are merged into
file: CHANGES.md      # Changelog file, relative to the repository root

issues:
  # url: https://jira.example.com   # Link issue keys to <url>/browse/<key>
  required: true      # Fail when a pull request references no issue
  # pattern: '([A-Z0-9]+-[0-9]+)(?=\\s|-|_|/|$)'

render:
  show_release_date: true
  show_author: true
  show_issues: true
  show_pr_date: true
  release_date_format: MMM Do YY
  pr_date_format: D/M/YY
"""


@click.group()
@click.version_option(version=__version__)
def main():
    """prchangelog - Build a changelog from Bitbucket tags and merged pull requests."""
    pass


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Write a sample prchangelog.yml in the current repository."""
    repo_root = get_repo_root()
    config_path = repo_root / CONFIG_FILENAME
    if not config_path.exists() or force:
        config_path.write_text(SAMPLE_CONFIG)
        click.echo(f"  Created: {config_path}")
    else:
        click.echo(f"  Skipped: {config_path} (already exists)")


@main.command()
@click.option("-o", "--overwrite", is_flag=True, help="Regenerate the full changelog. OVERWRITES the current changelog")
@click.option("-i", "--interactive", is_flag=True, help="Request username / password if not provided")
@click.option("-b", "--branch", default=None, help="Base branch to look for merged pull requests (default: master)")
@click.option("-f", "--file", "file", default=None, help="Changelog file (default: CHANGES.md)")
@click.option("--release-version", default=None, help="Version being released (default: pyproject.toml version)")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
def generate(
    overwrite: bool,
    interactive: bool,
    branch: str | None,
    file: str | None,
    release_version: str | None,
    verbose: bool,
):
    """Generate the changelog for the current version.

    By default the new release is prepended to the changelog, using merged
    pull requests since the latest tag.

    Examples:

        prchangelog generate                        # Prepend next release
        prchangelog generate --release-version 2.0  # Explicit version
        prchangelog generate --overwrite            # Rebuild from all tags
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    load_dotenv()

    repo_root = get_repo_root()

    try:
        config = ChangelogConfig.load(
            repo_root,
            version=release_version,
            branch=branch,
            file=file,
            overwrite=overwrite,
        )
        if interactive:
            config = _prompt_credentials(config)

        existing = read_changelog(config.file)
        config.verify(existing)
        logger.debug("Settings:\n%s", json.dumps(config.to_log_dict(), indent=2, default=str))

        client = BitbucketClient.from_config(config)
        releases = build_releases(client, config)
        contents = render_releases(releases, config.render, config.issues)
        write_changelog(config.file, contents, existing, config.overwrite)
    except (ConfigError, BitbucketAPIError, MissingIssueReferenceError) as e:
        click.echo(click.style(str(e), fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style(f"{config.version} written to {config.file.name}", fg="cyan", bold=True))


def _prompt_credentials(config: ChangelogConfig) -> ChangelogConfig:
    username = config.username or click.prompt("username")
    password = config.password or click.prompt("password", hide_input=True)
    return dataclasses.replace(config, username=username, password=password)
