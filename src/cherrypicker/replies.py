"""User-facing text posted back on the source pull request."""

from __future__ import annotations

from typing import Iterable

from cherrypicker.models import IssueComment, TriggerKind


def format_reply(comment: IssueComment | None, message: str, trigger: TriggerKind) -> str:
    if comment is not None:
        quoted = "\n".join(f"> {line}" for line in comment.body.splitlines())
        return (
            f"@{comment.user_login}: {message}\n\n"
            "<details>\n\n"
            f"In response to [this]({comment.html_url}):\n\n"
            f"{quoted}\n"
            "</details>"
        )
    if trigger == "manual":
        return f"In response to a manual cherrypick request: {message}"
    return f"In response to a cherrypick label: {message}"


def pending_merge_message(branches: Iterable[str]) -> str:
    joined = "/".join(branches)
    return (
        f"once the present PR merges, I will cherry-pick it on top of {joined} "
        "in the new PR and assign it to you."
    )


def untrusted_message(org: str) -> str:
    return (
        f"only [{org}](https://github.com/orgs/{org}/people) org members may request "
        "cherry-picks. You can still do the cherry-pick manually."
    )


UNMERGED_MESSAGE = "cannot cherry-pick an unmerged PR"


def same_branch_message(base: str, target: str) -> str:
    return f"base branch ({base}) needs to differ from target branch ({target})"


def fork_failed_message(org: str, repo: str, reason: str) -> str:
    return f"cannot fork {org}/{repo}: {reason}"


def checkout_failed_message(branch: str, reason: str) -> str:
    return f"cannot checkout `{branch}`: {reason}"


def apply_failed_message(pr_number: int, branch: str, reason: str) -> str:
    return f'#{pr_number} failed to apply on top of branch "{branch}":\n```\n{reason}\n```'


def conflict_issue_body(message: str) -> str:
    return f"Manual cherrypick required.\n\n{message}"


def conflict_issue_created_message(issue_number: int) -> str:
    return f"new issue created for failed cherrypick: #{issue_number}"


def push_failed_message(reason: str) -> str:
    return f"failed to push cherry-picked changes in GitHub: {reason}"


def pr_create_failed_message(reason: str) -> str:
    return f"new pull request could not be created: {reason}"


def pr_created_message(pr_number: int) -> str:
    return f"new pull request created: #{pr_number}"
