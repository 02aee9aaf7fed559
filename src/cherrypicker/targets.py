"""Turn comments and labels into the set of branches a merged PR should land on."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging
import re
from typing import Iterable

from cherrypicker.config import DEFAULT_TRIGGER_COMMAND, RepoConfig
from cherrypicker.models import IssueComment, SourcePullRequest, TriggerKind
from cherrypicker.observability import log_event
from cherrypicker.trust import TrustProvider


LOGGER = logging.getLogger("cherrypicker.targets")
_COMMAND_ALIAS = "/cherry-pick"


@dataclass(frozen=True)
class TargetRequest:
    branch: str
    requestor: str
    trigger: TriggerKind
    comment: IssueComment | None = None


@lru_cache(maxsize=32)
def command_pattern(trigger_command: str = DEFAULT_TRIGGER_COMMAND) -> re.Pattern[str]:
    commands = [trigger_command]
    if _COMMAND_ALIAS not in commands:
        commands.append(_COMMAND_ALIAS)
    alternatives = "|".join(re.escape(command) for command in commands)
    return re.compile(rf"(?m)^(?:{alternatives})[ \t]+(\S+)[^\n]*$")


def parse_cherry_pick_commands(
    body: str, trigger_command: str = DEFAULT_TRIGGER_COMMAND
) -> tuple[str, ...]:
    branches: list[str] = []
    for match in command_pattern(trigger_command).finditer(body):
        branch = match.group(1)
        if branch and branch not in branches:
            branches.append(branch)
    return tuple(branches)


def branches_from_labels(labels: Iterable[str], prefix: str) -> tuple[str, ...]:
    if not prefix:
        return ()
    branches: list[str] = []
    for label in labels:
        if not label.startswith(prefix):
            continue
        branch = label[len(prefix) :].strip()
        if branch and branch not in branches:
            branches.append(branch)
    return tuple(branches)


def resolve_merge_targets(
    *,
    org: str,
    pull_request: SourcePullRequest,
    action: str,
    comments: Iterable[IssueComment],
    labels: Iterable[str],
    repo: RepoConfig,
    trust: TrustProvider,
) -> tuple[TargetRequest, ...]:
    """Collect branch requests for a merged PR from its comment history and labels.

    Comment commands are attributed to their trusted authors and label requests to
    the PR author. Each branch appears once; the first request naming it wins.
    A `labeled` event with no cherry-pick label resolves to nothing, even when
    earlier comments asked for branches.
    """
    if not pull_request.merged or action not in {"closed", "labeled"}:
        return ()

    label_branches = branches_from_labels(labels, repo.label_prefix)
    if action == "labeled" and not label_branches:
        return ()

    comment_requests: list[TargetRequest] = []
    for comment in comments:
        for branch in parse_cherry_pick_commands(comment.body, repo.trigger_command):
            comment_requests.append(
                TargetRequest(
                    branch=branch,
                    requestor=comment.user_login,
                    trigger="comment",
                    comment=comment,
                )
            )

    if comment_requests:
        trusted = trust.trusted_subset(org, {request.requestor for request in comment_requests})
        untrusted_count = sum(1 for r in comment_requests if r.requestor not in trusted)
        comment_requests = [r for r in comment_requests if r.requestor in trusted]
        if untrusted_count:
            log_event(
                LOGGER,
                "untrusted_requests_dropped",
                pr_number=pull_request.number,
                dropped_count=untrusted_count,
            )

    label_requests = [
        TargetRequest(branch=branch, requestor=pull_request.author_login, trigger="label")
        for branch in label_branches
    ]

    resolved = coalesce_targets([*comment_requests, *label_requests])
    log_event(
        LOGGER,
        "targets_resolved",
        pr_number=pull_request.number,
        action=action,
        branches=tuple(request.branch for request in resolved),
    )
    return resolved


def coalesce_targets(requests: Iterable[TargetRequest]) -> tuple[TargetRequest, ...]:
    seen: set[str] = set()
    out: list[TargetRequest] = []
    for request in requests:
        if request.branch in seen:
            continue
        seen.add(request.branch)
        out.append(request)
    return tuple(out)
