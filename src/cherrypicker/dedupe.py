from __future__ import annotations

import logging
from typing import Iterable, Protocol

from cherrypicker.models import ExistingPullRequest, cherry_pick_branch_name
from cherrypicker.observability import log_event


LOGGER = logging.getLogger("cherrypicker.dedupe")


class PullRequestFinder(Protocol):
    def search_pull_requests(
        self, org: str, repo: str, title_text: str
    ) -> list[ExistingPullRequest]: ...

    def list_pull_requests(
        self, org: str, repo: str, *, head: str | None = None
    ) -> list[ExistingPullRequest]: ...


class PickLedger(Protocol):
    def picked_branches(
        self, org: str, repo: str, source_pr_number: int, branches: tuple[str, ...]
    ) -> frozenset[str]: ...

    def branch_picked(
        self, org: str, repo: str, source_pr_number: int, target_branch: str, *, head_owner: str
    ) -> bool: ...


def title_marker(source_pr_number: int, target_branch: str) -> str:
    return f"(#{source_pr_number})[{target_branch}]"


def already_picked(
    existing: Iterable[ExistingPullRequest], source_pr_number: int, branches: Iterable[str]
) -> frozenset[str]:
    titles = [pr.title for pr in existing]
    return frozenset(
        branch
        for branch in branches
        if any(title_marker(source_pr_number, branch) in title for title in titles)
    )


class TitleMarkerLedger:
    """Reads prior cherry-picks back out of PR titles, open or closed.

    The per-event check asks the search index for titles mentioning the source PR.
    The check made under the repository lock asks for the bot's own branch instead,
    which is exact and sees PRs the index has not caught up with yet.
    """

    def __init__(self, github: PullRequestFinder) -> None:
        self._github = github

    def picked_branches(
        self, org: str, repo: str, source_pr_number: int, branches: tuple[str, ...]
    ) -> frozenset[str]:
        if not branches:
            return frozenset()
        candidates = self._github.search_pull_requests(org, repo, f"(#{source_pr_number})")
        picked = already_picked(candidates, source_pr_number, branches)
        if picked:
            log_event(
                LOGGER,
                "duplicate_targets_dropped",
                repo_full_name=f"{org}/{repo}",
                pr_number=source_pr_number,
                branches=tuple(sorted(picked)),
            )
        return picked

    def branch_picked(
        self, org: str, repo: str, source_pr_number: int, target_branch: str, *, head_owner: str
    ) -> bool:
        head = f"{head_owner}:{cherry_pick_branch_name(source_pr_number, target_branch)}"
        pulls = self._github.list_pull_requests(org, repo, head=head)
        return bool(already_picked(pulls, source_pr_number, (target_branch,)))
