"""
Bitbucket Server REST API client for prchangelog.

Fetches tags, tag commits and merged pull requests for a single repository.
Uses HTTP basic auth (BITBUCKET_USER / BITBUCKET_PSWD).

Supports:
- Cursor-based pagination (start / limit / isLastPage)
- Incremental collection (only pull requests updated after a cutoff)
- One level of child pull requests (merged into a pull request's source branch)
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable, Iterator

import requests

if TYPE_CHECKING:
    from .config import ChangelogConfig

logger = logging.getLogger(__name__)

TAGS_PAGE_SIZE = 25
PULLS_PAGE_SIZE = 50
CHILD_PULLS_PAGE_SIZE = 25
MAX_WORKERS = 8


@dataclass(frozen=True)
class Page:
    """One page of a paged Bitbucket collection."""
    values: list[dict[str, Any]]
    is_last_page: bool
    next_page_start: int | None = None


@dataclass(frozen=True)
class Commit:
    """Commit metadata needed to place a tag in time."""
    hash: str
    author_timestamp: int  # epoch ms


@dataclass(frozen=True)
class Tag:
    """A release tag, newest first as returned by the server."""
    display_id: str
    hash: str
    commit: Commit | None = None


@dataclass(frozen=True)
class Author:
    display_name: str
    profile_url: str


@dataclass(frozen=True)
class PullRequest:
    """Parsed Bitbucket pull request data."""
    id: int
    title: str
    description: str
    author: Author
    self_url: str
    from_ref: str  # source branch display id, e.g. "feature/PROJ-1-thing"
    to_ref: str  # target ref id, e.g. "refs/heads/master"
    updated_date: int  # epoch ms
    children: tuple[PullRequest, ...] = field(default_factory=tuple)


class BitbucketAPIError(Exception):
    """Error from the Bitbucket API."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


PageFetch = Callable[[int, int], Page]


def iter_pages(fetch_page: PageFetch, page_size: int, start: int = 0) -> Iterator[Page]:
    """
    Yield pages from ``fetch_page(start, limit)`` until the collection ends.

    The collection ends after a page flagged ``isLastPage`` or a page holding
    fewer than ``page_size`` values. Errors from ``fetch_page`` propagate.
    """
    while True:
        page = fetch_page(start, page_size)
        yield page

        if page.is_last_page or len(page.values) < page_size:
            return

        if page.next_page_start is not None:
            start = page.next_page_start
        else:
            start += page_size


def collect_pages(
    fetch_page: PageFetch,
    page_size: int,
    keep: Callable[[dict[str, Any]], bool] | None = None,
    stop: Callable[[Page, list[dict[str, Any]], list[dict[str, Any]]], bool] | None = None,
) -> list[dict[str, Any]]:
    """
    Concatenate page values into a single list.

    Args:
        fetch_page: Page request function ``(start, limit) -> Page``
        page_size: Items requested per page
        keep: Optional filter applied to every page's values
        stop: Optional early-stop predicate called after each page with
              ``(page, kept_values, collected_so_far)``

    Returns:
        Collected (filtered) values in server order
    """
    collected: list[dict[str, Any]] = []

    for page in iter_pages(fetch_page, page_size):
        kept = page.values if keep is None else [v for v in page.values if keep(v)]
        collected.extend(kept)

        if stop is not None and stop(page, kept, collected):
            break

    return collected


class BitbucketClient:
    """Bitbucket Server REST client for one repository.

    Each thread gets its own ``requests.Session`` so fan-out workers never
    share one.
    """

    def __init__(self, base_url: str, username: str | None = None, password: str | None = None):
        self.base_url = base_url.rstrip("/")
        self.auth = (username, password or "") if username else None
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            if self.auth:
                session.auth = self.auth
            session.headers["Accept"] = "application/json"
            session.headers["User-Agent"] = "prchangelog/0.1.0"
            self._local.session = session
        return session

    @classmethod
    def from_config(cls, config: ChangelogConfig) -> "BitbucketClient":
        return cls(config.base_url, config.username, config.password)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Make an API request. Failures are not retried."""
        url = f"{self.base_url}{endpoint}"
        logger.debug("%s %s %s", method, url, params or "")

        try:
            response = self.session.request(method, url, params=params, **kwargs)
        except requests.RequestException as e:
            raise BitbucketAPIError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            raise BitbucketAPIError(
                f"Bitbucket API error: {response.status_code} - {response.text}",
                response.status_code,
            )

        return response

    def _get_json(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = self._request("GET", endpoint, params=params)
        try:
            data = response.json()
        except ValueError as e:
            raise BitbucketAPIError(
                f"Bitbucket API returned invalid JSON for {endpoint}: {e}",
                response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise BitbucketAPIError(f"Bitbucket API returned unexpected data for {endpoint}", response.status_code)
        return data

    def _get_page(self, endpoint: str, params: dict[str, Any]) -> Page:
        data = self._get_json(endpoint, params)
        return Page(
            values=data.get("values", []),
            is_last_page=data.get("isLastPage", True),
            next_page_start=data.get("nextPageStart"),
        )

    def get_tags_page(self, start: int, limit: int) -> Page:
        return self._get_page("/tags", {"start": start, "limit": limit})

    def get_pull_requests_page(self, branch: str, start: int, limit: int, state: str = "MERGED") -> Page:
        params = {
            "state": state,
            "order": "NEWEST",
            "at": f"refs/heads/{branch}",
            "start": start,
            "limit": limit,
        }
        return self._get_page("/pull-requests", params)

    def get_commit(self, commit_hash: str) -> Commit:
        """Get a single commit."""
        data = self._get_json(f"/commits/{commit_hash}")
        timestamp = data.get("authorTimestamp")
        if not isinstance(timestamp, int):
            raise BitbucketAPIError(f"Commit {commit_hash} has no authorTimestamp")
        return Commit(hash=data.get("id", commit_hash), author_timestamp=timestamp)


def parse_tag(data: dict[str, Any]) -> Tag:
    """Parse raw tag data into a Tag object."""
    return Tag(
        display_id=data.get("displayId", ""),
        hash=data.get("hash") or data.get("latestCommit", ""),
    )


def _self_href(data: dict[str, Any]) -> str:
    links = (data.get("links") or {}).get("self") or []
    return links[0].get("href", "") if links else ""


def parse_pull_request(data: dict[str, Any]) -> PullRequest:
    """Parse raw pull request data into a PullRequest object."""
    user = (data.get("author") or {}).get("user") or {}
    from_ref = data.get("fromRef") or {}
    to_ref = data.get("toRef") or {}

    return PullRequest(
        id=data.get("id", 0),
        title=data.get("title", ""),
        description=data.get("description") or "",
        author=Author(
            display_name=user.get("displayName", ""),
            profile_url=_self_href(user),
        ),
        self_url=_self_href(data),
        from_ref=from_ref.get("displayId", ""),
        to_ref=to_ref.get("id", ""),
        updated_date=data.get("updatedDate", 0),
    )


def collect_tags(client: BitbucketClient, max_count: int | None = None) -> list[Tag]:
    """
    Collect release tags (newest first) with their commits attached.

    Args:
        client: Bitbucket API client
        max_count: Stop once this many tags are collected (None for all)

    Returns:
        List of Tag objects, each with ``commit`` set
    """
    def enough(page: Page, kept: list[dict[str, Any]], collected: list[dict[str, Any]]) -> bool:
        return max_count is not None and len(collected) >= max_count

    raw = collect_pages(client.get_tags_page, TAGS_PAGE_SIZE, stop=enough)
    if max_count is not None:
        raw = raw[:max_count]

    tags = [parse_tag(item) for item in raw]
    logger.debug("Collected %d tags", len(tags))

    if not tags:
        return tags

    with ThreadPoolExecutor(max_workers=MAX_WORKERS) as executor:
        commits = list(executor.map(client.get_commit, [tag.hash for tag in tags]))

    return [replace(tag, commit=commit) for tag, commit in zip(tags, commits)]


def collect_merged_pulls(
    client: BitbucketClient,
    branch: str,
    since: int | None = None,
    page_size: int = PULLS_PAGE_SIZE,
) -> list[PullRequest]:
    """
    Collect merged pull requests targeting ``branch``, newest-updated first.

    With ``since``, only pull requests updated strictly after it are kept and
    paging stops at the first page that loses any item to the cutoff. Pages
    are ordered by recency, so that page is taken to be where the cutoff
    falls; this is an approximation, not a guarantee.

    Args:
        client: Bitbucket API client
        branch: Target branch name (without refs/heads/)
        since: Cutoff timestamp in epoch ms
        page_size: Items requested per page

    Returns:
        List of PullRequest objects without children
    """
    keep = None
    stop = None
    if since is not None:
        def keep(item: dict[str, Any]) -> bool:
            return item.get("updatedDate", 0) > since

        def stop(page: Page, kept: list[dict[str, Any]], collected: list[dict[str, Any]]) -> bool:
            return len(kept) < len(page.values)

    def fetch(start: int, limit: int) -> Page:
        return client.get_pull_requests_page(branch, start, limit)

    raw = collect_pages(fetch, page_size, keep=keep, stop=stop)

    # "at" matches pull requests from or to the branch
    target = f"refs/heads/{branch}"
    prs = [parse_pull_request(item) for item in raw]
    prs = [pr for pr in prs if pr.to_ref == target]
    logger.debug("Collected %d merged pull requests into %s", len(prs), branch)
    return prs


def attach_children(
    client: BitbucketClient,
    prs: list[PullRequest],
    page_size: int = CHILD_PULLS_PAGE_SIZE,
) -> list[PullRequest]:
    """
    Attach pull requests merged into each pull request's source branch.

    Child collection runs in parallel and is not recursive.
    """
    if not prs:
        return prs

    def children_of(pr: PullRequest) -> list[PullRequest]:
        return collect_merged_pulls(client, pr.from_ref, None, page_size)

    with ThreadPoolExecutor(max_workers=MAX_WORKERS) as executor:
        children = list(executor.map(children_of, prs))

    return [replace(pr, children=tuple(kids)) for pr, kids in zip(prs, children)]
