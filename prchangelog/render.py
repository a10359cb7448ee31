"""
Markdown changelog renderer.

Turns an ordered list of releases into the changelog document:

    ## 1.2.0
    Oct 5th 26

    - [42](https://.../pull-requests/42) Add thing <small>[Jo](https://...) (PROJ-1) - 5/10/26</small>
        - [41](https://.../pull-requests/41) Part of thing <small>...</small>
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from .issues import IssuePolicy

if TYPE_CHECKING:
    from .bitbucket import PullRequest
    from .releases import Release


DATE_TOKENS = re.compile(r"MMMM|MMM|MM|M|Do|DD|D|YYYY|YY")


@dataclass(frozen=True)
class RenderOptions:
    """Which fields each changelog entry shows."""
    show_release_date: bool = True
    show_author: bool = True
    show_issues: bool = True
    show_pr_date: bool = True
    release_date_format: str = "MMM Do YY"
    pr_date_format: str = "D/M/YY"
    indent: int = 4


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        return f"{day}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def format_date(timestamp: int, fmt: str) -> str:
    """
    Format an epoch-ms timestamp (UTC) with moment-style tokens.

    Supported tokens: MMMM, MMM, MM, M, Do, DD, D, YYYY, YY.
    """
    dt = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
    tokens = {
        "MMMM": dt.strftime("%B"),
        "MMM": dt.strftime("%b"),
        "MM": f"{dt.month:02d}",
        "M": str(dt.month),
        "Do": _ordinal(dt.day),
        "DD": f"{dt.day:02d}",
        "D": str(dt.day),
        "YYYY": str(dt.year),
        "YY": f"{dt.year % 100:02d}",
    }
    return DATE_TOKENS.sub(lambda m: tokens[m.group(0)], fmt)


def render_release_title(version: str | None) -> str:
    return f"## {version}"


def render_pr(
    pr: PullRequest,
    indent: int,
    options: RenderOptions,
    issues: IssuePolicy,
) -> list[str]:
    """Render a pull request bullet and, below it, its children."""
    line = f"{' ' * indent}- [{pr.id}]({pr.self_url}) {pr.title} "

    small = ""
    if options.show_author:
        small += f"[{pr.author.display_name}]({pr.author.profile_url})"
    if options.show_issues:
        small += issues.annotate(pr)
    if options.show_pr_date:
        small += f" - {format_date(pr.updated_date, options.pr_date_format)}"
    if small:
        line += f"<small>{small.strip()}</small>"

    lines = [line.rstrip()]
    for child in pr.children:
        lines.extend(render_pr(child, indent + options.indent, options, issues))
    return lines


def render_release(
    release: Release,
    options: RenderOptions,
    issues: IssuePolicy,
) -> list[str]:
    lines = [render_release_title(release.version)]
    if options.show_release_date and release.date is not None:
        lines.append(format_date(release.date, options.release_date_format))
    lines.append("")

    for pr in release.prs:
        lines.extend(render_pr(pr, 0, options, issues))
    lines.append("")
    return lines


def render_releases(
    releases: list[Release],
    options: RenderOptions | None = None,
    issues: IssuePolicy | None = None,
) -> str:
    """
    Render releases into a changelog document.

    Releases are separated by a blank line and the document ends with a
    single newline.

    Raises:
        MissingIssueReferenceError: If issue references are required and an
            entry has none
    """
    options = options or RenderOptions()
    issues = issues or IssuePolicy()

    lines: list[str] = []
    for release in releases:
        lines.extend(render_release(release, options, issues))

    return "\n".join(lines).rstrip("\n") + "\n"
