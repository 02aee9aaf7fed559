from __future__ import annotations

import pytest

from cherrypicker.events import (
    EventPayloadError,
    parse_event,
    parse_issue_comment_event,
    parse_pull_request_event,
)
from cherrypicker.models import IssueCommentEvent, PullRequestEvent


def _repository() -> dict[str, object]:
    return {"name": "tidb", "full_name": "pingcap/tidb", "owner": {"login": "pingcap"}}


def _comment_payload(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "action": "created",
        "repository": _repository(),
        "issue": {
            "number": 2,
            "state": "closed",
            "pull_request": {"url": "https://api.github.com/repos/pingcap/tidb/pulls/2"},
        },
        "comment": {
            "id": 11,
            "body": "/cherrypick stage",
            "user": {"login": "wiseguy"},
            "html_url": "https://github.com/pingcap/tidb/pull/2#issuecomment-11",
        },
    }
    payload.update(overrides)
    return payload


def _pull_request_payload(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "action": "closed",
        "repository": _repository(),
        "pull_request": {
            "number": 2,
            "title": "This is a fix for X",
            "state": "closed",
            "merged": True,
            "user": {"login": "author"},
            "head": {"ref": "fix-x"},
            "base": {"ref": "master"},
        },
    }
    payload.update(overrides)
    return payload


def test_parse_issue_comment_event() -> None:
    event = parse_event("issue_comment", _comment_payload())

    assert isinstance(event, IssueCommentEvent)
    assert (event.org, event.repo) == ("pingcap", "tidb")
    assert event.issue_number == 2
    assert event.issue_state == "closed"
    assert event.is_pull_request is True
    assert event.comment.user_login == "wiseguy"


def test_issue_comment_on_plain_issue_is_not_a_pull_request() -> None:
    event = parse_issue_comment_event(
        _comment_payload(issue={"number": 3, "state": "open"})
    )

    assert event is not None
    assert event.is_pull_request is False


@pytest.mark.parametrize("action", ["edited", "deleted", ""])
def test_issue_comment_other_actions_are_ignored(action: str) -> None:
    assert parse_event("issue_comment", _comment_payload(action=action)) is None


def test_parse_pull_request_closed_and_labeled() -> None:
    closed = parse_event("pull_request", _pull_request_payload())
    labeled = parse_pull_request_event(
        _pull_request_payload(action="labeled", label={"name": "cherrypick/stage"})
    )

    assert isinstance(closed, PullRequestEvent)
    assert closed.pull_request.merged is True
    assert closed.label is None
    assert labeled is not None
    assert labeled.label == "cherrypick/stage"


@pytest.mark.parametrize("action", ["opened", "synchronize", "unlabeled"])
def test_pull_request_other_actions_are_ignored(action: str) -> None:
    assert parse_event("pull_request", _pull_request_payload(action=action)) is None


def test_unsupported_event_is_ignored() -> None:
    assert parse_event("push", {"ref": "refs/heads/master"}) is None


def test_repository_falls_back_to_full_name() -> None:
    event = parse_event(
        "pull_request", _pull_request_payload(repository={"full_name": "tikv/tikv"})
    )

    assert event is not None
    assert (event.org, event.repo) == ("tikv", "tikv")


@pytest.mark.parametrize(
    ("event_name", "payload", "message"),
    [
        ("issue_comment", [], "must be a JSON object"),
        ("issue_comment", _comment_payload(issue=None), "payload.issue must be an object"),
        (
            "issue_comment",
            _comment_payload(issue={"number": "2", "pull_request": {}}),
            "issue.number must be an integer",
        ),
        ("pull_request", _pull_request_payload(repository={}), "repository owner/name missing"),
        ("pull_request", _pull_request_payload(pull_request=None), "payload.pull_request"),
    ],
)
def test_malformed_payloads_raise(event_name: str, payload: object, message: str) -> None:
    with pytest.raises(EventPayloadError, match=message):
        parse_event(event_name, payload)
