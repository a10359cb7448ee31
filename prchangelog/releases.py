"""
Release reconstruction.

Partitions the merged pull request stream (newest first) into releases
bounded by tag commit timestamps, and runs the collection pipeline that
feeds it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .bitbucket import attach_children, collect_merged_pulls, collect_tags

if TYPE_CHECKING:
    from .bitbucket import BitbucketClient, PullRequest, Tag
    from .config import ChangelogConfig

logger = logging.getLogger(__name__)


@dataclass
class Release:
    """A named group of pull requests shipped together."""
    version: str | None = None
    date: int | None = None  # epoch ms
    prs: list[PullRequest] = field(default_factory=list)


def assemble_releases(
    version: str,
    tags: list[Tag],
    prs: list[PullRequest],
    date: int | None = None,
) -> list[Release]:
    """
    Partition pull requests into releases.

    ``prs`` must be ordered newest-updated first and ``tags`` newest first,
    each with its commit attached. A pull request belongs to the release of
    the newest tag whose commit is not older than it; anything updated after
    the newest tag belongs to the head release named ``version``.

    If a crossed tag carries the same name as the release being closed, that
    release is dropped: the tag already stands for it in history.

    Args:
        version: Version of the head (not yet tagged) release
        tags: Release tags, newest first
        prs: Merged pull requests, newest-updated first
        date: Head release date in epoch ms

    Returns:
        Releases, newest first
    """
    pending = iter(tags)
    tag = next(pending, None)
    release = Release(version=version, date=date)
    releases: list[Release] = []

    for pr in prs:
        if tag is None or pr.updated_date > tag.commit.author_timestamp:
            release.prs.append(pr)
            continue

        if tag.display_id != release.version:
            releases.append(release)
        else:
            logger.debug("Dropping head release %s, tag already exists", release.version)

        release = Release(
            version=tag.display_id,
            date=tag.commit.author_timestamp,
            prs=[pr],
        )
        tag = next(pending, None)

    if not releases or releases[-1] is not release:
        releases.append(release)

    return releases


def build_releases(
    client: BitbucketClient,
    config: ChangelogConfig,
    now: int | None = None,
) -> list[Release]:
    """
    Fetch tags and pull requests and assemble them into releases.

    Each stage completes before the next starts. In overwrite mode every tag
    is fetched to rebuild the full history; otherwise only the newest tag is
    needed and pull requests older than it are skipped.

    Args:
        client: Bitbucket API client
        config: Resolved configuration
        now: Head release date in epoch ms (defaults to the current time)

    Returns:
        Releases, newest first
    """
    if now is None:
        now = int(time.time() * 1000)

    tags = collect_tags(client, max_count=None if config.overwrite else 1)

    since = None
    if not config.overwrite and tags:
        since = tags[0].commit.author_timestamp

    prs = collect_merged_pulls(client, config.branch, since=since)
    prs = attach_children(client, prs)
    logger.debug("Assembling %d pull requests against %d tags", len(prs), len(tags))

    return assemble_releases(config.version, tags, prs, date=now)
