"""
Issue-tracker reference extraction.

Finds issue keys (Jira style, e.g. PROJ-123) in a pull request's title,
description and source branch name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .bitbucket import PullRequest


ISSUE_KEY_PATTERN = r"([A-Z0-9]+-[0-9]+)(?=\s|-|_|/|$)"


class MissingIssueReferenceError(Exception):
    """A pull request references no issue while references are required."""
    def __init__(self, pr: PullRequest):
        super().__init__(f"Issue reference not found in pull request #{pr.id}: {pr.title}")
        self.pr = pr


def extract_issue_refs(pr: PullRequest, pattern: str = ISSUE_KEY_PATTERN) -> list[str]:
    """
    Extract issue references from a pull request.

    Title, description and source branch are searched in that order and the
    matches deduplicated, keeping the first occurrence.

    Args:
        pr: Pull request to inspect
        pattern: Issue key regex; group 1 is used when present

    Returns:
        Ordered list of unique issue keys
    """
    regex = re.compile(pattern)
    found: list[str] = []

    for text in (pr.title, pr.description, pr.from_ref):
        for match in regex.finditer(text or ""):
            found.append(match.group(1) if regex.groups else match.group(0))

    return list(dict.fromkeys(found))


def format_issue_refs(refs: list[str], issue_url: str | None = None) -> str:
    """Render the issue annotation, e.g. `` (PROJ-1, PROJ-2)``."""
    if not refs:
        return ""
    if issue_url:
        base = issue_url.rstrip("/")
        return " (" + ", ".join(f"[{ref}]({base}/browse/{ref})" for ref in refs) + ")"
    return " (" + ", ".join(refs) + ")"


@dataclass(frozen=True)
class IssuePolicy:
    """How issue references are found and rendered."""
    pattern: str = ISSUE_KEY_PATTERN
    required: bool = True  # raise MissingIssueReferenceError when none found
    url: str | None = None  # issue tracker base url, links to <url>/browse/<key>

    def annotate(self, pr: PullRequest) -> str:
        """Build the issue annotation for ``pr`` under this policy."""
        refs = extract_issue_refs(pr, self.pattern)
        if not refs and self.required:
            raise MissingIssueReferenceError(pr)
        return format_issue_refs(refs, self.url)
