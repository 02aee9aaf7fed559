from __future__ import annotations

import logging
from pathlib import Path

from cherrypicker.git_ops import GitRepoManager, MissingBranchError
from cherrypicker.github_gateway import GitHubError, GitHubGateway
from cherrypicker.models import (
    Applied,
    CherryPickRequest,
    Conflict,
    NewBranchSpec,
    PickOutcome,
    PlatformError,
    cherry_pick_branch_name,
)
from cherrypicker.observability import log_event
from cherrypicker.shell import CommandError


LOGGER = logging.getLogger("cherrypicker.branch_manager")


class CherryPickError(RuntimeError):
    """A step of the branch pipeline failed before the patch could be judged."""


class ForkError(CherryPickError):
    pass


class CheckoutError(CherryPickError):
    """The target branch is missing, so there is nothing to pick onto."""

    def __init__(self, branch: str, reason: str) -> None:
        super().__init__(reason)
        self.branch = branch
        self.reason = reason


class BranchManager:
    """Fork, checkout, branch and patch steps for one repository.

    Callers must hold the repository lock for the whole sequence, including the push.
    """

    def __init__(
        self,
        github: GitHubGateway,
        git: GitRepoManager,
        *,
        bot_login: str,
        bot_email: str,
    ) -> None:
        self._github = github
        self._git = git
        self._bot_login = bot_login
        self._bot_email = bot_email

    def ensure_fork(self, org: str, repo: str) -> str:
        try:
            fork_name = self._github.ensure_fork(self._bot_login, org, repo)
        except (GitHubError, CommandError) as exc:
            raise ForkError(str(exc)) from exc
        if fork_name != repo:
            log_event(LOGGER, "fork_renamed", repo_full_name=f"{org}/{repo}", fork_name=fork_name)
        return fork_name

    def prepare_branch(
        self, request: CherryPickRequest, fork_name: str
    ) -> tuple[Path, NewBranchSpec]:
        try:
            checkout_path = self._git.prepare_checkout(request.target_branch)
        except MissingBranchError as exc:
            raise CheckoutError(request.target_branch, str(exc)) from exc

        spec = NewBranchSpec(
            fork_owner=self._bot_login,
            fork_name=fork_name,
            branch_name=cherry_pick_branch_name(request.source_pr_number, request.target_branch),
        )
        self._git.configure_identity(checkout_path, name=self._bot_login, email=self._bot_email)
        self._git.create_or_reset_branch(checkout_path, spec.branch_name)
        return checkout_path, spec

    def apply(
        self, checkout_path: Path, request: CherryPickRequest, spec: NewBranchSpec
    ) -> Applied | Conflict:
        patch = self._github.get_pull_request_patch(
            request.org, request.repo, request.source_pr_number
        )
        conflict = self._git.apply_patch(checkout_path, patch)
        if conflict is not None:
            return conflict
        return Applied(branch=spec, checkout_path=checkout_path)

    def pick(self, request: CherryPickRequest) -> PickOutcome:
        """Run fork, checkout and patch; the push is left to the caller."""
        try:
            fork_name = self.ensure_fork(request.org, request.repo)
            checkout_path, spec = self.prepare_branch(request, fork_name)
            outcome = self.apply(checkout_path, request, spec)
        except (CherryPickError, GitHubError, CommandError) as exc:
            log_event(
                LOGGER,
                "cherry_pick_step_failed",
                level=logging.WARNING,
                pr_number=request.source_pr_number,
                target_branch=request.target_branch,
                error_type=type(exc).__name__,
            )
            return PlatformError(cause=exc)
        return outcome

    def push(self, applied: Applied) -> None:
        branch = applied.branch
        self._git.push_branch(
            applied.checkout_path,
            remote_url=self._git.fork_remote_url(branch.fork_owner, branch.fork_name),
            branch=branch.branch_name,
            force=True,
        )

