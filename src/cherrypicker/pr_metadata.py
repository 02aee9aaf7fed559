from __future__ import annotations

from typing import Iterable

from cherrypicker.config import RepoConfig
from cherrypicker.dedupe import title_marker
from cherrypicker.models import (
    CherryPickRequest,
    NewBranchSpec,
    NewPullRequestSpec,
    SourcePullRequest,
)


def cherry_pick_title(source: SourcePullRequest, target_branch: str) -> str:
    return f"{source.title} {title_marker(source.number, target_branch)}"


def cherry_pick_body(source: SourcePullRequest) -> str:
    body = f"This is an automated cherry-pick of #{source.number}"
    if source.body:
        body += f"\n\n{source.body}"
    return body


def copied_labels(labels: Iterable[str], repo: RepoConfig, target_branch: str) -> tuple[str, ...]:
    """Source labels worth carrying over, sorted, plus the picked marker label if configured."""
    kept = {
        label
        for label in labels
        if label not in repo.exclude_labels
        and not (repo.label_prefix and label.startswith(repo.label_prefix))
    }
    if repo.picked_label_prefix:
        kept.add(f"{repo.picked_label_prefix}{target_branch}")
    return tuple(sorted(kept))


def resolve_assignees(
    requestor: str, source: SourcePullRequest, *, bot_login: str
) -> tuple[str, ...]:
    if requestor and requestor.lower() != bot_login.lower():
        return (requestor,)
    return source.assignees


def build_pull_request_spec(
    *,
    request: CherryPickRequest,
    source: SourcePullRequest,
    branch: NewBranchSpec,
    repo: RepoConfig,
    bot_login: str,
) -> NewPullRequestSpec:
    return NewPullRequestSpec(
        title=cherry_pick_title(source, request.target_branch),
        body=cherry_pick_body(source),
        head=branch.head,
        base=request.target_branch,
        labels=copied_labels(source.labels, repo, request.target_branch),
        reviewers=source.requested_reviewers,
        assignees=resolve_assignees(request.requestor, source, bot_login=bot_login),
    )
