from __future__ import annotations

import logging

from cherrypicker.github_gateway import GitHubGateway
from cherrypicker.models import NewPullRequestSpec, PullRequest
from cherrypicker.observability import log_event


LOGGER = logging.getLogger("cherrypicker.submitter")


class Submitter:
    """Opens the cherry-pick PR and copies its metadata; errors propagate unretried."""

    def __init__(self, github: GitHubGateway) -> None:
        self._github = github

    def open(self, org: str, repo: str, spec: NewPullRequestSpec) -> PullRequest:
        pr = self._github.create_pull_request(
            org,
            repo,
            title=spec.title,
            body=spec.body,
            head=spec.head,
            base=spec.base,
        )
        log_event(
            LOGGER,
            "cherry_pick_pr_created",
            repo_full_name=f"{org}/{repo}",
            pr_number=pr.number,
            pr_url=pr.html_url,
            base=spec.base,
        )
        return pr

    def decorate(self, org: str, repo: str, pr: PullRequest, spec: NewPullRequestSpec) -> None:
        self._github.add_labels(org, repo, pr.number, spec.labels)
        self._github.request_review(org, repo, pr.number, spec.reviewers)
        self._github.assign_issue(org, repo, pr.number, spec.assignees)

