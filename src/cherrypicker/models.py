from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal


TriggerKind = Literal["comment", "label", "manual"]
PullRequestAction = Literal["closed", "labeled"]
BranchStatus = Literal["created", "conflict", "skipped", "failed"]

_CHERRY_PICK_BRANCH_FORMAT = "cherry-pick-{number}-to-{target}"


@dataclass(frozen=True)
class IssueComment:
    comment_id: int
    body: str
    user_login: str
    html_url: str


@dataclass(frozen=True)
class SourcePullRequest:
    number: int
    title: str
    body: str
    html_url: str
    state: str
    merged: bool
    base_ref: str
    head_ref: str
    merge_commit_sha: str | None
    author_login: str
    labels: tuple[str, ...]
    requested_reviewers: tuple[str, ...]
    assignees: tuple[str, ...]


@dataclass(frozen=True)
class ExistingPullRequest:
    number: int
    title: str
    state: str
    head_ref: str
    base_ref: str


@dataclass(frozen=True)
class PullRequest:
    number: int
    html_url: str


@dataclass(frozen=True)
class IssueCommentEvent:
    org: str
    repo: str
    action: str
    issue_number: int
    issue_state: str
    is_pull_request: bool
    comment: IssueComment


@dataclass(frozen=True)
class PullRequestEvent:
    org: str
    repo: str
    action: str
    pull_request: SourcePullRequest
    label: str | None = None


GitHubEvent = IssueCommentEvent | PullRequestEvent


@dataclass(frozen=True)
class RepositoryLockKey:
    org: str
    repo: str

    @classmethod
    def of(cls, org: str, repo: str) -> RepositoryLockKey:
        return cls(org=org.strip().lower(), repo=repo.strip().lower())

    @property
    def full_name(self) -> str:
        return f"{self.org}/{self.repo}"


@dataclass(frozen=True)
class CherryPickRequest:
    org: str
    repo: str
    source_pr_number: int
    target_branch: str
    requestor: str
    trigger: TriggerKind
    comment: IssueComment | None = None


@dataclass(frozen=True)
class NewBranchSpec:
    fork_owner: str
    fork_name: str
    branch_name: str

    @property
    def head(self) -> str:
        return f"{self.fork_owner}:{self.branch_name}"


@dataclass(frozen=True)
class NewPullRequestSpec:
    title: str
    body: str
    head: str
    base: str
    labels: tuple[str, ...]
    reviewers: tuple[str, ...]
    assignees: tuple[str, ...]


@dataclass(frozen=True)
class ConflictRecord:
    reason: str
    issue_number: int | None = None


@dataclass(frozen=True)
class Applied:
    branch: NewBranchSpec
    checkout_path: Path


@dataclass(frozen=True)
class Conflict:
    reason: str


@dataclass(frozen=True)
class PlatformError:
    cause: Exception


PickOutcome = Applied | Conflict | PlatformError


@dataclass(frozen=True)
class BranchResult:
    target_branch: str
    status: BranchStatus
    pr_number: int | None = None
    issue_number: int | None = None
    detail: str = ""


def cherry_pick_branch_name(source_pr_number: int, target_branch: str) -> str:
    return _CHERRY_PICK_BRANCH_FORMAT.format(number=source_pr_number, target=target_branch)
