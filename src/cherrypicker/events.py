"""Typed views of the GitHub webhook payloads the cherry-picker reacts to."""

from __future__ import annotations

import logging

from cherrypicker.github_gateway import (
    as_object_dict,
    as_string,
    parse_comment_payload,
    parse_pull_request_payload,
)
from cherrypicker.models import GitHubEvent, IssueCommentEvent, PullRequestEvent
from cherrypicker.observability import log_event


LOGGER = logging.getLogger("cherrypicker.events")
ISSUE_COMMENT_EVENT = "issue_comment"
PULL_REQUEST_EVENT = "pull_request"
SUPPORTED_EVENTS = (ISSUE_COMMENT_EVENT, PULL_REQUEST_EVENT)
_PULL_REQUEST_ACTIONS = frozenset({"closed", "labeled"})


class EventPayloadError(ValueError):
    pass


def parse_event(event_name: str, payload: object) -> GitHubEvent | None:
    payload_obj = as_object_dict(payload)
    if payload_obj is None:
        raise EventPayloadError("webhook payload must be a JSON object")
    if event_name == ISSUE_COMMENT_EVENT:
        return parse_issue_comment_event(payload_obj)
    if event_name == PULL_REQUEST_EVENT:
        return parse_pull_request_event(payload_obj)
    log_event(LOGGER, "event_ignored", event_name=event_name, reason="unsupported_event")
    return None


def parse_issue_comment_event(payload: dict[str, object]) -> IssueCommentEvent | None:
    action = as_string(payload.get("action"))
    if action != "created":
        log_event(LOGGER, "event_ignored", event_name=ISSUE_COMMENT_EVENT, reason=action)
        return None
    issue = _require_object(payload, "issue")
    comment = _require_object(payload, "comment")
    org, repo = _repo_coordinates(payload)
    number = issue.get("number")
    if isinstance(number, bool) or not isinstance(number, int):
        raise EventPayloadError("issue.number must be an integer")
    return IssueCommentEvent(
        org=org,
        repo=repo,
        action=action,
        issue_number=number,
        issue_state=as_string(issue.get("state")),
        is_pull_request=as_object_dict(issue.get("pull_request")) is not None,
        comment=parse_comment_payload(comment),
    )


def parse_pull_request_event(payload: dict[str, object]) -> PullRequestEvent | None:
    action = as_string(payload.get("action"))
    if action not in _PULL_REQUEST_ACTIONS:
        log_event(LOGGER, "event_ignored", event_name=PULL_REQUEST_EVENT, reason=action)
        return None
    pull_request = parse_pull_request_payload(_require_object(payload, "pull_request"))
    org, repo = _repo_coordinates(payload)
    label_obj = as_object_dict(payload.get("label"))
    label = as_string(label_obj.get("name")) if label_obj is not None else ""
    return PullRequestEvent(
        org=org,
        repo=repo,
        action=action,
        pull_request=pull_request,
        label=label or None,
    )


def _repo_coordinates(payload: dict[str, object]) -> tuple[str, str]:
    repository = _require_object(payload, "repository")
    owner = as_object_dict(repository.get("owner")) or {}
    org = as_string(owner.get("login"))
    repo = as_string(repository.get("name"))
    if not org or not repo:
        full_name = as_string(repository.get("full_name"))
        org, _, repo = full_name.partition("/")
    if not org or not repo:
        raise EventPayloadError("repository owner/name missing from payload")
    return org, repo


def _require_object(payload: dict[str, object], key: str) -> dict[str, object]:
    value = as_object_dict(payload.get(key))
    if value is None:
        raise EventPayloadError(f"payload.{key} must be an object")
    return value
