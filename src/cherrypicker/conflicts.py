from __future__ import annotations

import logging

from cherrypicker.github_gateway import GitHubGateway
from cherrypicker.models import CherryPickRequest, ConflictRecord
from cherrypicker.observability import log_event
from cherrypicker.replies import (
    conflict_issue_body,
    conflict_issue_created_message,
    format_reply,
)


LOGGER = logging.getLogger("cherrypicker.conflicts")


class ConflictHandler:
    """Reports a patch that did not apply.

    With tracking issues enabled this creates one issue and posts one comment linking
    to it; otherwise it posts one comment carrying the failure. Errors from either
    call propagate to the caller.
    """

    def __init__(self, github: GitHubGateway, *, create_issue: bool) -> None:
        self._github = github
        self._create_issue = create_issue

    def handle(
        self,
        request: CherryPickRequest,
        *,
        title: str,
        message: str,
        assignees: tuple[str, ...],
    ) -> ConflictRecord:
        log_event(
            LOGGER,
            "cherry_pick_conflict",
            level=logging.WARNING,
            pr_number=request.source_pr_number,
            target_branch=request.target_branch,
            create_issue=self._create_issue,
        )
        if not self._create_issue:
            self._reply(request, message)
            return ConflictRecord(reason=message)

        issue_number = self._github.create_issue(
            request.org,
            request.repo,
            title=title,
            body=conflict_issue_body(message),
            assignees=assignees,
        )
        log_event(
            LOGGER,
            "conflict_issue_created",
            pr_number=request.source_pr_number,
            target_branch=request.target_branch,
            issue_number=issue_number,
        )
        self._reply(request, conflict_issue_created_message(issue_number))
        return ConflictRecord(reason=message, issue_number=issue_number)

    def _reply(self, request: CherryPickRequest, message: str) -> None:
        self._github.create_comment(
            request.org,
            request.repo,
            request.source_pr_number,
            format_reply(request.comment, message, request.trigger),
        )
