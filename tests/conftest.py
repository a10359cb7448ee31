from __future__ import annotations

from prchangelog.bitbucket import Author, Commit, Page, PullRequest, Tag


def make_pr(
    id: int,
    updated: int,
    title: str | None = None,
    description: str = "",
    from_ref: str | None = None,
    to_ref: str = "refs/heads/master",
    children: tuple[PullRequest, ...] = (),
) -> PullRequest:
    return PullRequest(
        id=id,
        title=title if title is not None else f"PROJ-{id} change {id}",
        description=description,
        author=Author(display_name="Alice", profile_url="https://bb.example.com/users/alice"),
        self_url=f"https://bb.example.com/pull-requests/{id}",
        from_ref=from_ref if from_ref is not None else f"feature/PROJ-{id}-change",
        to_ref=to_ref,
        updated_date=updated,
        children=children,
    )


def make_tag(name: str, timestamp: int) -> Tag:
    return Tag(display_id=name, hash=f"sha-{name}", commit=Commit(hash=f"sha-{name}", author_timestamp=timestamp))


def raw_pr(id: int, updated: int, branch: str = "master", from_ref: str | None = None) -> dict:
    return {
        "id": id,
        "title": f"PROJ-{id} change",
        "description": None,
        "author": {"user": {"displayName": "Alice", "links": {"self": [{"href": "https://bb/users/alice"}]}}},
        "links": {"self": [{"href": f"https://bb/pull-requests/{id}"}]},
        "fromRef": {"displayId": from_ref or f"feature/PROJ-{id}"},
        "toRef": {"id": f"refs/heads/{branch}"},
        "updatedDate": updated,
    }


def pages_of(*pages: list, size: int) -> list[Page]:
    """Build Page objects; the final one is flagged as last."""
    result = []
    for i, values in enumerate(pages):
        result.append(Page(values=list(values), is_last_page=(i == len(pages) - 1), next_page_start=(i + 1) * size))
    return result
