from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
import threading
from typing import Callable, Iterable

from cherrypicker.branch_manager import BranchManager, CheckoutError, ForkError
from cherrypicker.config import AppConfig, ConfigAgent, RepoConfig, RuntimeConfig
from cherrypicker.conflicts import ConflictHandler
from cherrypicker.dedupe import PickLedger, TitleMarkerLedger
from cherrypicker.git_ops import GitRepoManager
from cherrypicker.github_gateway import GitHubError, GitHubGateway
from cherrypicker.models import (
    BranchResult,
    CherryPickRequest,
    Conflict,
    GitHubEvent,
    IssueCommentEvent,
    PlatformError,
    PullRequestEvent,
    SourcePullRequest,
)
from cherrypicker.observability import log_event, logging_repo_context
from cherrypicker.pr_metadata import build_pull_request_spec, cherry_pick_title, resolve_assignees
from cherrypicker.replies import (
    UNMERGED_MESSAGE,
    apply_failed_message,
    checkout_failed_message,
    fork_failed_message,
    format_reply,
    pending_merge_message,
    pr_create_failed_message,
    pr_created_message,
    push_failed_message,
    same_branch_message,
    untrusted_message,
)
from cherrypicker.repo_locks import RepositoryLockManager
from cherrypicker.shell import CommandError
from cherrypicker.submitter import Submitter
from cherrypicker.targets import TargetRequest, parse_cherry_pick_commands, resolve_merge_targets
from cherrypicker.trust import trust_provider_for


LOGGER = logging.getLogger("cherrypicker.orchestrator")

GitFactory = Callable[[RuntimeConfig, RepoConfig], GitRepoManager]


class CherryPickFailures(RuntimeError):
    """One or more branches of a single event failed; the others still ran."""

    def __init__(
        self,
        failures: tuple[tuple[str, Exception], ...],
        results: tuple[BranchResult, ...] = (),
    ) -> None:
        branches = ", ".join(branch for branch, _ in failures)
        super().__init__(f"cherry-pick failed for branch(es): {branches}")
        self.failures = failures
        self.results = results


@dataclass(frozen=True)
class EventReport:
    event: GitHubEvent
    results: tuple[BranchResult, ...]
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CherryPickOrchestrator:
    def __init__(
        self,
        config_agent: ConfigAgent,
        *,
        github: GitHubGateway,
        lock_manager: RepositoryLockManager | None = None,
        git_factory: GitFactory = GitRepoManager,
        ledger: PickLedger | None = None,
    ) -> None:
        self._config_agent = config_agent
        self._github = github
        self._locks = lock_manager or RepositoryLockManager()
        self._git_factory = git_factory
        self._ledger = ledger or TitleMarkerLedger(github)
        self._submitter = Submitter(github)
        self._git_managers: dict[tuple[RuntimeConfig, RepoConfig], GitRepoManager] = {}
        self._git_managers_lock = threading.Lock()

    def run_events(self, events: Iterable[GitHubEvent]) -> tuple[EventReport, ...]:
        """Handle events concurrently, one worker per event, and report each outcome."""
        config = self._config_agent.current()
        pending: list[tuple[GitHubEvent, Future[tuple[BranchResult, ...]]]] = []
        with ThreadPoolExecutor(max_workers=config.runtime.worker_count) as pool:
            for event in events:
                pending.append((event, pool.submit(self.handle_event, event)))

        reports: list[EventReport] = []
        for event, future in pending:
            try:
                reports.append(EventReport(event=event, results=future.result()))
            except CherryPickFailures as exc:
                reports.append(EventReport(event=event, results=exc.results, error=exc))
            except Exception as exc:  # noqa: BLE001
                log_event(
                    LOGGER,
                    "event_failed",
                    level=logging.WARNING,
                    event_org=event.org,
                    event_repo=event.repo,
                    error_type=type(exc).__name__,
                )
                reports.append(EventReport(event=event, results=(), error=exc))
        return tuple(reports)

    def handle_event(self, event: GitHubEvent) -> tuple[BranchResult, ...]:
        self._reload_config()
        with logging_repo_context(f"{event.org}/{event.repo}"):
            if isinstance(event, IssueCommentEvent):
                return self.handle_issue_comment(event)
            return self.handle_pull_request(event)

    def handle_issue_comment(self, event: IssueCommentEvent) -> tuple[BranchResult, ...]:
        config = self._config_agent.current()
        repo_config = config.repo_for(event.org, event.repo)
        if repo_config is None or event.action != "created" or not event.is_pull_request:
            return ()
        comment = event.comment
        if comment.user_login.lower() == config.runtime.bot_login.lower():
            return ()
        branches = parse_cherry_pick_commands(comment.body, repo_config.trigger_command)
        if not branches:
            return ()

        log_event(
            LOGGER,
            "event_received",
            kind="issue_comment",
            pr_number=event.issue_number,
            requestor=comment.user_login,
            branches=branches,
        )
        trust = trust_provider_for(repo_config, self._github)
        if not trust.is_trusted(event.org, comment.user_login):
            self._github.create_comment(
                event.org,
                event.repo,
                event.issue_number,
                format_reply(comment, untrusted_message(event.org), "comment"),
            )
            return ()

        source = self._github.get_pull_request(event.org, event.repo, event.issue_number)
        if not source.merged:
            if source.state == "closed":
                reply = UNMERGED_MESSAGE
            else:
                labels = tuple(f"{repo_config.label_prefix}{branch}" for branch in branches)
                if repo_config.label_prefix:
                    self._github.add_labels(event.org, event.repo, source.number, labels)
                reply = pending_merge_message(branches)
            self._github.create_comment(
                event.org, event.repo, source.number, format_reply(comment, reply, "comment")
            )
            return ()

        targets = tuple(
            TargetRequest(
                branch=branch,
                requestor=comment.user_login,
                trigger="comment",
                comment=comment,
            )
            for branch in branches
        )
        return self._run_pipeline(config, repo_config, event.org, event.repo, source, targets)

    def handle_pull_request(self, event: PullRequestEvent) -> tuple[BranchResult, ...]:
        config = self._config_agent.current()
        repo_config = config.repo_for(event.org, event.repo)
        source = event.pull_request
        if repo_config is None or not source.merged:
            return ()
        if event.action == "labeled" and not (
            event.label and event.label.startswith(repo_config.label_prefix)
        ):
            return ()

        log_event(
            LOGGER,
            "event_received",
            kind="pull_request",
            action=event.action,
            pr_number=source.number,
        )
        comments = self._github.list_issue_comments(event.org, event.repo, source.number)
        labels = self._github.get_issue_labels(event.org, event.repo, source.number)
        targets = resolve_merge_targets(
            org=event.org,
            pull_request=source,
            action=event.action,
            comments=comments,
            labels=labels,
            repo=repo_config,
            trust=trust_provider_for(repo_config, self._github),
        )
        return self._run_pipeline(config, repo_config, event.org, event.repo, source, targets)

    def handle_manual_request(
        self, org: str, repo: str, pr_number: int, branches: Iterable[str]
    ) -> tuple[BranchResult, ...]:
        self._reload_config()
        config = self._config_agent.current()
        repo_config = config.repo_for(org, repo)
        if repo_config is None:
            raise ValueError(f"No configuration for repository {org}/{repo}")
        with logging_repo_context(f"{org}/{repo}"):
            source = self._github.get_pull_request(org, repo, pr_number)
            ordered = tuple(dict.fromkeys(branch.strip() for branch in branches if branch.strip()))
            log_event(
                LOGGER, "event_received", kind="manual", pr_number=pr_number, branches=ordered
            )
            if not source.merged:
                return tuple(
                    BranchResult(target_branch=branch, status="skipped", detail=UNMERGED_MESSAGE)
                    for branch in ordered
                )
            targets = tuple(
                TargetRequest(branch=branch, requestor=config.runtime.bot_login, trigger="manual")
                for branch in ordered
            )
            return self._run_pipeline(config, repo_config, org, repo, source, targets)

    def _run_pipeline(
        self,
        config: AppConfig,
        repo_config: RepoConfig,
        org: str,
        repo: str,
        source: SourcePullRequest,
        targets: tuple[TargetRequest, ...],
    ) -> tuple[BranchResult, ...]:
        results: list[BranchResult] = []
        requests: list[CherryPickRequest] = []
        for target in targets:
            request = CherryPickRequest(
                org=org,
                repo=repo,
                source_pr_number=source.number,
                target_branch=target.branch,
                requestor=target.requestor,
                trigger=target.trigger,
                comment=target.comment,
            )
            if target.branch == source.base_ref:
                self._reply(request, same_branch_message(source.base_ref, target.branch))
                results.append(
                    BranchResult(target_branch=target.branch, status="skipped", detail="same base")
                )
                continue
            requests.append(request)

        picked = self._ledger.picked_branches(
            org, repo, source.number, tuple(request.target_branch for request in requests)
        )
        failures: list[tuple[str, Exception]] = []
        for request in requests:
            if request.target_branch in picked:
                results.append(
                    BranchResult(
                        target_branch=request.target_branch,
                        status="skipped",
                        detail="already picked",
                    )
                )
                continue
            log_event(
                LOGGER,
                "cherry_pick_requested",
                pr_number=source.number,
                target_branch=request.target_branch,
                requestor=request.requestor,
                trigger=request.trigger,
            )
            try:
                results.append(self._pick_branch(config, repo_config, source, request))
            except Exception as exc:  # noqa: BLE001
                log_event(
                    LOGGER,
                    "cherry_pick_failed",
                    level=logging.WARNING,
                    pr_number=source.number,
                    target_branch=request.target_branch,
                    error_type=type(exc).__name__,
                )
                failures.append((request.target_branch, exc))
                results.append(
                    BranchResult(
                        target_branch=request.target_branch,
                        status="failed",
                        detail=str(exc),
                    )
                )

        if failures:
            raise CherryPickFailures(tuple(failures), tuple(results))
        return tuple(results)

    def _pick_branch(
        self,
        config: AppConfig,
        repo_config: RepoConfig,
        source: SourcePullRequest,
        request: CherryPickRequest,
    ) -> BranchResult:
        runtime = config.runtime
        branch = request.target_branch
        with self._locks.hold(request.org, request.repo):
            # Another worker may have finished the same branch while this one waited.
            if self._ledger.branch_picked(
                request.org, request.repo, source.number, branch, head_owner=runtime.bot_login
            ):
                return BranchResult(target_branch=branch, status="skipped", detail="already picked")

            manager = BranchManager(
                self._github,
                self._git_for(runtime, repo_config),
                bot_login=runtime.bot_login,
                bot_email=runtime.bot_email,
            )
            outcome = manager.pick(request)
            if isinstance(outcome, PlatformError):
                cause = outcome.cause
                if isinstance(cause, CheckoutError):
                    self._reply(request, checkout_failed_message(branch, cause.reason))
                    return BranchResult(target_branch=branch, status="skipped", detail=cause.reason)
                if isinstance(cause, ForkError):
                    self._reply(request, fork_failed_message(request.org, request.repo, str(cause)))
                raise cause

            assignees = resolve_assignees(request.requestor, source, bot_login=runtime.bot_login)
            if isinstance(outcome, Conflict):
                handler = ConflictHandler(
                    self._github, create_issue=repo_config.create_issue_on_conflict
                )
                record = handler.handle(
                    request,
                    title=cherry_pick_title(source, branch),
                    message=apply_failed_message(source.number, branch, outcome.reason),
                    assignees=assignees,
                )
                return BranchResult(
                    target_branch=branch,
                    status="conflict",
                    issue_number=record.issue_number,
                    detail=record.reason,
                )

            try:
                manager.push(outcome)
            except CommandError as exc:
                self._reply(request, push_failed_message(str(exc)))
                raise

            spec = build_pull_request_spec(
                request=request,
                source=source,
                branch=outcome.branch,
                repo=repo_config,
                bot_login=runtime.bot_login,
            )
            try:
                pr = self._submitter.open(request.org, request.repo, spec)
            except GitHubError as exc:
                self._reply(request, pr_create_failed_message(str(exc)))
                raise
            self._reply(request, pr_created_message(pr.number))
            self._submitter.decorate(request.org, request.repo, pr, spec)
            return BranchResult(target_branch=branch, status="created", pr_number=pr.number)

    def _reload_config(self) -> None:
        if self._config_agent.reload():
            log_event(LOGGER, "config_reloaded")

    def _reply(self, request: CherryPickRequest, message: str) -> None:
        self._github.create_comment(
            request.org,
            request.repo,
            request.source_pr_number,
            format_reply(request.comment, message, request.trigger),
        )

    def _git_for(self, runtime: RuntimeConfig, repo_config: RepoConfig) -> GitRepoManager:
        key = (runtime, repo_config)
        with self._git_managers_lock:
            manager = self._git_managers.get(key)
            if manager is None:
                manager = self._git_factory(runtime, repo_config)
                self._git_managers[key] = manager
            return manager
