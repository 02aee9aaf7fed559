from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import time
from typing import Literal, cast
from urllib.parse import quote, urlencode

from cherrypicker.models import (
    ExistingPullRequest,
    IssueComment,
    PullRequest,
    SourcePullRequest,
)
from cherrypicker.observability import log_event
from cherrypicker.shell import run, run_bytes


LOGGER = logging.getLogger("cherrypicker.github_gateway")
_PAGE_SIZE = 100
_PATCH_MEDIA_TYPE = "application/vnd.github.v3.patch"
_SEARCH_MAX_PAGES = 10
_FORK_READY_ATTEMPTS = 10
_FORK_READY_SLEEP_SECONDS = 2.0
PullRequestListState = Literal["open", "closed", "all"]


class GitHubError(RuntimeError):
    """A GitHub API call failed or returned an unexpected payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class _HttpResponse:
    status_code: int
    headers: dict[str, str]
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class GitHubGateway:
    """Thin GitHub REST client built on `gh api`; every call is synchronous."""

    def get_pull_request(self, org: str, repo: str, number: int) -> SourcePullRequest:
        payload = self._api_json("GET", f"/repos/{org}/{repo}/pulls/{number}")
        payload_obj = as_object_dict(payload)
        if payload_obj is None:
            raise GitHubError("Unexpected GitHub response: expected object for pull request")
        snapshot = parse_pull_request_payload(payload_obj)
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            repo_full_name=f"{org}/{repo}",
            pr_number=snapshot.number,
        )
        return snapshot

    def get_pull_request_patch(self, org: str, repo: str, number: int) -> bytes:
        """Return the mbox patch exactly as GitHub serves it, line endings included."""
        path = f"/repos/{org}/{repo}/pulls/{number}"
        cmd = _gh_api_command("GET", path, accept=_PATCH_MEDIA_TYPE)
        raw = run_bytes(cmd, check=False)
        status_code, headers, body = _parse_binary_http_response(raw)
        if not 200 <= status_code < 300:
            raise _error_for(
                _HttpResponse(
                    status_code=status_code,
                    headers=headers,
                    body=body.decode("utf-8", errors="replace"),
                ),
                path,
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_patch",
            repo_full_name=f"{org}/{repo}",
            pr_number=number,
            size=len(body),
        )
        return body

    def list_pull_requests(
        self,
        org: str,
        repo: str,
        *,
        state: PullRequestListState = "all",
        head: str | None = None,
    ) -> list[ExistingPullRequest]:
        """List pull requests; `head` (`<owner>:<branch>`) narrows it to one source branch."""
        query = {"state": state}
        if head is not None:
            query["head"] = head
        pulls: list[ExistingPullRequest] = []
        for item_obj in self._paginate(f"/repos/{org}/{repo}/pulls", query):
            head_obj = as_object_dict(item_obj.get("head")) or {}
            base = as_object_dict(item_obj.get("base")) or {}
            pulls.append(
                ExistingPullRequest(
                    number=_as_int(item_obj.get("number"), field="number"),
                    title=as_string(item_obj.get("title")),
                    state=as_string(item_obj.get("state")),
                    head_ref=_head_label(head_obj),
                    base_ref=as_string(base.get("ref")),
                )
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_requests",
            repo_full_name=f"{org}/{repo}",
            state=state,
            head=head,
            count=len(pulls),
        )
        return pulls

    def search_pull_requests(
        self, org: str, repo: str, title_text: str
    ) -> list[ExistingPullRequest]:
        """Pull requests, open or closed, whose title the search index matches to `title_text`.

        The index tokenizes titles, so callers must re-check the exact text on the results.
        """
        query = f'repo:{org}/{repo} is:pr in:title "{title_text}"'
        pulls: list[ExistingPullRequest] = []
        for page in range(1, _SEARCH_MAX_PAGES + 1):
            params: dict[str, object] = {"q": query, "per_page": _PAGE_SIZE, "page": page}
            path = f"/search/issues?{urlencode(params)}"
            payload_obj = as_object_dict(self._api_json("GET", path))
            items = payload_obj.get("items") if payload_obj is not None else None
            if not isinstance(items, list):
                raise GitHubError("Unexpected GitHub response: expected items for search")
            for item in items:
                item_obj = as_object_dict(item)
                if item_obj is None:
                    continue
                pulls.append(
                    ExistingPullRequest(
                        number=_as_int(item_obj.get("number"), field="number"),
                        title=as_string(item_obj.get("title")),
                        state=as_string(item_obj.get("state")),
                        head_ref="",
                        base_ref="",
                    )
                )
            if len(items) < _PAGE_SIZE:
                break
        log_event(
            LOGGER,
            "github_read",
            endpoint="search_pull_requests",
            repo_full_name=f"{org}/{repo}",
            count=len(pulls),
        )
        return pulls

    def list_issue_comments(self, org: str, repo: str, number: int) -> list[IssueComment]:
        comments: list[IssueComment] = []
        for item_obj in self._paginate(f"/repos/{org}/{repo}/issues/{number}/comments", {}):
            comments.append(parse_comment_payload(item_obj))
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_comments",
            repo_full_name=f"{org}/{repo}",
            issue_number=number,
            count=len(comments),
        )
        return comments

    def get_issue_labels(self, org: str, repo: str, number: int) -> tuple[str, ...]:
        labels: list[str] = []
        for item_obj in self._paginate(f"/repos/{org}/{repo}/issues/{number}/labels", {}):
            name = item_obj.get("name")
            if isinstance(name, str) and name:
                labels.append(name)
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_labels",
            repo_full_name=f"{org}/{repo}",
            issue_number=number,
            count=len(labels),
        )
        return tuple(labels)

    def create_comment(self, org: str, repo: str, number: int, body: str) -> None:
        path = f"/repos/{org}/{repo}/issues/{number}/comments"
        try:
            self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                level=logging.WARNING,
                repo_full_name=f"{org}/{repo}",
                issue_number=number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_issue_comment_posted",
            repo_full_name=f"{org}/{repo}",
            issue_number=number,
        )

    def create_issue(
        self,
        org: str,
        repo: str,
        *,
        title: str,
        body: str,
        labels: tuple[str, ...] = (),
        assignees: tuple[str, ...] = (),
    ) -> int:
        path = f"/repos/{org}/{repo}/issues"
        request: dict[str, object] = {"title": title, "body": body}
        if labels:
            request["labels"] = list(labels)
        if assignees:
            request["assignees"] = list(assignees)
        try:
            payload_obj = as_object_dict(self._api_json("POST", path, payload=request))
            if payload_obj is None:
                raise GitHubError("Unexpected GitHub response: expected object for issue")
            number = _as_int(payload_obj.get("number"), field="number")
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_create_failed",
                level=logging.WARNING,
                repo_full_name=f"{org}/{repo}",
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_issue_created",
            repo_full_name=f"{org}/{repo}",
            issue_number=number,
        )
        return number

    def create_pull_request(
        self,
        org: str,
        repo: str,
        *,
        title: str,
        body: str,
        head: str,
        base: str,
        maintainer_can_modify: bool = True,
    ) -> PullRequest:
        path = f"/repos/{org}/{repo}/pulls"
        try:
            payload = self._api_json(
                "POST",
                path,
                payload={
                    "title": title,
                    "body": body,
                    "head": head,
                    "base": base,
                    "maintainer_can_modify": maintainer_can_modify,
                },
            )
            payload_obj = as_object_dict(payload)
            if payload_obj is None:
                raise GitHubError("Unexpected GitHub response: expected object for PR")
            number = _as_int(payload_obj.get("number"), field="number")
            html_url = as_string(payload_obj.get("html_url"))
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_pr_create_failed",
                level=logging.WARNING,
                repo_full_name=f"{org}/{repo}",
                base=base,
                head=head,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_pr_created",
            repo_full_name=f"{org}/{repo}",
            pr_number=number,
            pr_url=html_url,
            base=base,
            head=head,
        )
        return PullRequest(number=number, html_url=html_url)

    def add_labels(self, org: str, repo: str, number: int, labels: tuple[str, ...]) -> None:
        if not labels:
            return
        path = f"/repos/{org}/{repo}/issues/{number}/labels"
        self._api_json("POST", path, payload={"labels": list(labels)})
        log_event(
            LOGGER,
            "github_labels_added",
            repo_full_name=f"{org}/{repo}",
            issue_number=number,
            labels=labels,
        )

    def assign_issue(self, org: str, repo: str, number: int, logins: tuple[str, ...]) -> None:
        if not logins:
            return
        path = f"/repos/{org}/{repo}/issues/{number}/assignees"
        self._api_json("POST", path, payload={"assignees": list(logins)})
        log_event(
            LOGGER,
            "github_assignees_added",
            repo_full_name=f"{org}/{repo}",
            issue_number=number,
            assignees=logins,
        )

    def request_review(self, org: str, repo: str, number: int, logins: tuple[str, ...]) -> None:
        if not logins:
            return
        path = f"/repos/{org}/{repo}/pulls/{number}/requested_reviewers"
        self._api_json("POST", path, payload={"reviewers": list(logins)})
        log_event(
            LOGGER,
            "github_review_requested",
            repo_full_name=f"{org}/{repo}",
            pr_number=number,
            reviewers=logins,
        )

    def is_member(self, org: str, login: str) -> bool:
        path = f"/orgs/{org}/members/{quote(login)}"
        response = self._request("GET", path)
        # 302 means the token cannot see private membership; treat it as not a member.
        if response.status_code in {302, 404}:
            member = False
        elif response.ok:
            member = True
        else:
            raise _error_for(response, path)
        log_event(LOGGER, "github_read", endpoint="org_membership", org=org, member=member)
        return member

    def list_org_members(self, org: str) -> tuple[str, ...]:
        logins: list[str] = []
        for item_obj in self._paginate(f"/orgs/{org}/members", {"role": "all"}):
            login = _as_login(item_obj.get("login"))
            if login:
                logins.append(login)
        log_event(LOGGER, "github_read", endpoint="org_members", org=org, count=len(logins))
        return tuple(logins)

    def ensure_fork(self, owner_login: str, org: str, repo: str) -> str:
        existing = self._find_fork(owner_login, org, repo, repo)
        if existing is not None:
            log_event(LOGGER, "github_fork_found", fork=f"{owner_login}/{existing}")
            return existing

        payload_obj = as_object_dict(self._api_json("POST", f"/repos/{org}/{repo}/forks"))
        if payload_obj is None:
            raise GitHubError("Unexpected GitHub response: expected object for fork")
        fork_name = as_string(payload_obj.get("name")) or repo
        log_event(
            LOGGER,
            "github_fork_requested",
            repo_full_name=f"{org}/{repo}",
            fork=f"{owner_login}/{fork_name}",
        )

        # Forks are created asynchronously; wait until the repository answers.
        for _ in range(_FORK_READY_ATTEMPTS):
            if self._find_fork(owner_login, org, repo, fork_name) is not None:
                return fork_name
            time.sleep(_FORK_READY_SLEEP_SECONDS)
        raise GitHubError(f"Fork {owner_login}/{fork_name} did not become available")

    def _find_fork(self, owner_login: str, org: str, repo: str, fork_name: str) -> str | None:
        response = self._request("GET", f"/repos/{owner_login}/{fork_name}")
        if response.status_code == 404:
            return None
        if not response.ok:
            raise _error_for(response, f"/repos/{owner_login}/{fork_name}")
        payload_obj = as_object_dict(_decode_json(response.body))
        if payload_obj is None or not _as_bool_or_false(payload_obj.get("fork")):
            return None
        parent = as_object_dict(payload_obj.get("parent")) or {}
        parent_full_name = as_string(parent.get("full_name")).lower()
        if parent_full_name and parent_full_name != f"{org}/{repo}".lower():
            return None
        return as_string(payload_obj.get("name")) or fork_name

    def _paginate(self, path: str, query: dict[str, str]) -> list[dict[str, object]]:
        items: list[dict[str, object]] = []
        page = 1
        while True:
            query_items: dict[str, object] = {**query, "per_page": _PAGE_SIZE, "page": page}
            payload = self._api_json("GET", f"{path}?{urlencode(query_items)}")
            if not isinstance(payload, list):
                raise GitHubError(f"Unexpected GitHub response: expected list for {path}")
            for item in payload:
                item_obj = as_object_dict(item)
                if item_obj is not None:
                    items.append(item_obj)
            if len(payload) < _PAGE_SIZE:
                return items
            page += 1

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        response = self._request(method, path, payload=payload)
        if not response.ok:
            raise _error_for(response, path)
        if not response.body.strip():
            return {}
        return _decode_json(response.body)

    def _request(
        self, method: str, path: str, *, payload: dict[str, object] | None = None
    ) -> _HttpResponse:
        method_upper = method.upper()
        stdin_payload = json.dumps(payload) if payload is not None else None
        cmd = _gh_api_command(method_upper, path, with_input=payload is not None)

        raw = run(cmd, input_text=stdin_payload, check=False)
        try:
            status_code, headers, body = _parse_http_response(raw)
        except GitHubError as exc:
            log_event(
                LOGGER,
                "github_request_failed",
                level=logging.WARNING,
                method=method_upper,
                path=path,
                error=str(exc),
                raw_preview=_preview_for_log(raw),
            )
            raise
        return _HttpResponse(status_code=status_code, headers=headers, body=body)


def parse_pull_request_payload(payload_obj: dict[str, object]) -> SourcePullRequest:
    head = as_object_dict(payload_obj.get("head"))
    base = as_object_dict(payload_obj.get("base"))
    if head is None or base is None:
        raise GitHubError("Unexpected GitHub response: missing pull request head/base")
    user_obj = as_object_dict(payload_obj.get("user"))
    merge_sha = payload_obj.get("merge_commit_sha")
    return SourcePullRequest(
        number=_as_int(payload_obj.get("number"), field="number"),
        title=as_string(payload_obj.get("title")),
        body=as_string(payload_obj.get("body")),
        html_url=as_string(payload_obj.get("html_url")),
        state=as_string(payload_obj.get("state")),
        merged=_as_bool_or_false(payload_obj.get("merged")),
        base_ref=as_string(base.get("ref")),
        head_ref=as_string(head.get("ref")),
        merge_commit_sha=merge_sha if isinstance(merge_sha, str) and merge_sha else None,
        author_login=_as_login(user_obj.get("login") if user_obj else None),
        labels=_names(payload_obj.get("labels"), key="name"),
        requested_reviewers=_names(payload_obj.get("requested_reviewers"), key="login"),
        assignees=_names(payload_obj.get("assignees"), key="login"),
    )


def parse_comment_payload(payload_obj: dict[str, object]) -> IssueComment:
    user_obj = as_object_dict(payload_obj.get("user"))
    return IssueComment(
        comment_id=_as_int(payload_obj.get("id"), field="id"),
        body=as_string(payload_obj.get("body")),
        user_login=_as_login(user_obj.get("login") if user_obj else None),
        html_url=as_string(payload_obj.get("html_url")),
    )


def _head_label(head: dict[str, object]) -> str:
    label = as_string(head.get("label"))
    if label:
        return label
    return as_string(head.get("ref"))


def _names(value: object, *, key: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    names: list[str] = []
    for entry in value:
        entry_obj = as_object_dict(entry)
        if entry_obj is None:
            continue
        name = entry_obj.get(key)
        if isinstance(name, str) and name and name not in names:
            names.append(name)
    return tuple(names)


def _error_for(response: _HttpResponse, path: str) -> GitHubError:
    message = response.body.strip() or "<empty>"
    return GitHubError(
        f"GitHub API request {path} failed with status {response.status_code}: "
        f"{_preview_for_log(message)}",
        status_code=response.status_code,
    )


def _decode_json(body: str) -> object:
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise GitHubError(f"Unexpected GitHub response: invalid JSON ({exc})") from exc


def _gh_api_command(
    method: str, path: str, *, accept: str | None = None, with_input: bool = False
) -> list[str]:
    cmd = ["gh", "api", "--method", method, "--include"]
    if accept is not None:
        cmd.extend(["--header", f"Accept: {accept}"])
    if with_input:
        cmd.extend(["--input", "-"])
    cmd.append(path)
    return cmd


def _parse_binary_http_response(raw: bytes) -> tuple[int, dict[str, str], bytes]:
    """Split `gh api --include` output without touching the body bytes."""
    start = raw.find(b"HTTP/")
    if start < 0:
        raise GitHubError("Unexpected GitHub response: missing HTTP status line")
    rest = raw[start:]
    while True:
        head, body = _split_header_block(rest)
        status_code, headers, _ = _parse_http_response(head.decode("latin-1"))
        if body.startswith(b"HTTP/"):
            rest = body
            continue
        return status_code, headers, body


def _split_header_block(raw: bytes) -> tuple[bytes, bytes]:
    found = ((raw.find(b"\r\n\r\n"), 4), (raw.find(b"\n\n"), 2))
    ends = [(index, size) for index, size in found if index >= 0]
    if not ends:
        return raw, b""
    index, size = min(ends)
    return raw[:index], raw[index + size :]


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    # gh prints one status block per redirect hop; the last one is authoritative.
    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index
            break
    if status_line_index < 0:
        raise GitHubError("Unexpected GitHub response: missing HTTP status line")

    while True:
        status_line = lines[status_line_index]
        status_parts = status_line.split(" ", 2)
        if len(status_parts) < 2:
            raise GitHubError(f"Unexpected GitHub response status line: {status_line!r}")
        try:
            status_code = int(status_parts[1])
        except ValueError as exc:
            raise GitHubError(f"Unexpected GitHub response status line: {status_line!r}") from exc

        headers: dict[str, str] = {}
        body_start = len(lines)
        for index in range(status_line_index + 1, len(lines)):
            line = lines[index]
            if line == "":
                body_start = index + 1
                break
            if ":" not in line:
                continue
            key, value = line.split(":", 1)
            headers[key.strip().lower()] = value.strip()

        if body_start < len(lines) and lines[body_start].startswith("HTTP/"):
            status_line_index = body_start
            continue
        body = "\n".join(lines[body_start:])
        return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_login(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubError(f"Unexpected GitHub response type for {field}")


def _as_bool_or_false(value: object) -> bool:
    return value is True
