from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging

from cherrypicker.config import RepoConfig, RuntimeConfig
from cherrypicker.models import Conflict
from cherrypicker.observability import log_event
from cherrypicker.shell import run, run_bytes_result, run_result


LOGGER = logging.getLogger("cherrypicker.git_ops")


class MissingBranchError(RuntimeError):
    """The remote has no branch to cherry-pick onto."""

    def __init__(self, branch: str) -> None:
        super().__init__(f"origin/{branch} does not exist")
        self.branch = branch


@dataclass(frozen=True)
class RepoLayout:
    mirror_path: Path
    working_copy: Path


class GitRepoManager:
    """Owns the mirror and the single shared working copy of one repository.

    None of these methods are safe to call concurrently for the same repository;
    callers serialize through the repository lock.
    """

    def __init__(self, runtime: RuntimeConfig, repo: RepoConfig) -> None:
        self.runtime = runtime
        self.repo = repo
        self.layout = RepoLayout(
            mirror_path=runtime.base_dir / "repos" / repo.owner / f"{repo.name}.git",
            working_copy=runtime.base_dir / "checkouts" / repo.owner / repo.name,
        )

    def ensure_layout(self) -> None:
        self.layout.mirror_path.parent.mkdir(parents=True, exist_ok=True)
        self.layout.working_copy.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_mirror()

    def ensure_working_copy(self) -> Path:
        working_copy = self.layout.working_copy
        remote_url = self.repo.effective_remote_url
        if not working_copy.exists():
            self.ensure_layout()
            log_event(LOGGER, "git_working_copy_cloned", checkout_path=str(working_copy))
            run(
                [
                    "git",
                    "clone",
                    "--reference-if-able",
                    str(self.layout.mirror_path),
                    remote_url,
                    str(working_copy),
                ]
            )
        else:
            run(["git", "-C", str(working_copy), "remote", "set-url", "origin", remote_url])
        return working_copy

    def prepare_checkout(self, target_branch: str) -> Path:
        checkout_path = self.ensure_working_copy()
        log_event(
            LOGGER,
            "git_prepare_checkout",
            checkout_path=str(checkout_path),
            target_branch=target_branch,
        )
        # A previous attempt may have died mid-`git am`; clear it before touching branches.
        run(["git", "-C", str(checkout_path), "am", "--abort"], check=False)
        run(["git", "-C", str(checkout_path), "fetch", "origin", "--prune", "--tags"])
        remote_ref = run_result(
            [
                "git",
                "-C",
                str(checkout_path),
                "rev-parse",
                "--verify",
                "--quiet",
                f"refs/remotes/origin/{target_branch}",
            ]
        )
        if not remote_ref.ok:
            raise MissingBranchError(target_branch)
        run(
            [
                "git",
                "-C",
                str(checkout_path),
                "checkout",
                "-B",
                target_branch,
                f"origin/{target_branch}",
            ]
        )
        run(["git", "-C", str(checkout_path), "reset", "--hard", f"origin/{target_branch}"])
        run(["git", "-C", str(checkout_path), "clean", "-ffdx"])
        return checkout_path

    def configure_identity(self, checkout_path: Path, *, name: str, email: str) -> None:
        run(["git", "-C", str(checkout_path), "config", "user.name", name])
        run(["git", "-C", str(checkout_path), "config", "user.email", email])

    def create_or_reset_branch(self, checkout_path: Path, branch: str) -> None:
        log_event(
            LOGGER,
            "git_branch_reset",
            checkout_path=str(checkout_path),
            branch=branch,
        )
        run(["git", "-C", str(checkout_path), "checkout", "-B", branch])

    def apply_patch(self, checkout_path: Path, patch: bytes) -> Conflict | None:
        if not patch.strip():
            return Conflict(reason="the pull request patch is empty")
        result = run_bytes_result(
            ["git", "-C", str(checkout_path), "am", "--3way"],
            input_bytes=patch,
        )
        if result.ok:
            log_event(LOGGER, "git_patch_applied", checkout_path=str(checkout_path))
            return None

        run(["git", "-C", str(checkout_path), "am", "--abort"], check=False)
        reason = _summarize_git_error(
            result.stderr or result.stdout.decode("utf-8", errors="replace")
        )
        log_event(
            LOGGER,
            "git_patch_conflict",
            checkout_path=str(checkout_path),
            exit_code=result.returncode,
            reason=reason,
        )
        return Conflict(reason=reason)

    def fork_remote_url(self, fork_owner: str, fork_name: str) -> str:
        return f"git@github.com:{fork_owner}/{fork_name}.git"

    def push_branch(
        self, checkout_path: Path, *, remote_url: str, branch: str, force: bool = True
    ) -> None:
        log_event(
            LOGGER,
            "git_push",
            checkout_path=str(checkout_path),
            branch=branch,
            force=force,
        )
        argv = ["git", "-C", str(checkout_path), "push"]
        if force:
            argv.append("--force")
        argv.extend([remote_url, f"{branch}:refs/heads/{branch}"])
        try:
            run(argv)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "git_push_failed",
                level=logging.WARNING,
                checkout_path=str(checkout_path),
                branch=branch,
                error_type=type(exc).__name__,
            )
            raise

    def _ensure_mirror(self) -> None:
        remote_url = self.repo.effective_remote_url
        source = self.repo.local_clone_source or remote_url
        if not self.layout.mirror_path.exists():
            log_event(
                LOGGER,
                "git_mirror_cloned",
                mirror_path=str(self.layout.mirror_path),
            )
            run(["git", "clone", "--mirror", source, str(self.layout.mirror_path)])

        log_event(
            LOGGER,
            "git_mirror_synced",
            mirror_path=str(self.layout.mirror_path),
        )
        run(
            [
                "git",
                f"--git-dir={self.layout.mirror_path}",
                "remote",
                "set-url",
                "origin",
                remote_url,
            ]
        )
        run(
            [
                "git",
                f"--git-dir={self.layout.mirror_path}",
                "fetch",
                "origin",
                "--prune",
                "--tags",
            ]
        )


def _summarize_git_error(raw_error: str) -> str:
    normalized = " ".join(line.strip() for line in raw_error.splitlines() if line.strip())
    if not normalized:
        return "git am failed"
    if len(normalized) > 480:
        return normalized[:477] + "..."
    return normalized
