from __future__ import annotations

import argparse
import json
from pathlib import Path

from cherrypicker.config import AppConfig, ConfigAgent, load_config
from cherrypicker.events import SUPPORTED_EVENTS, parse_event
from cherrypicker.git_ops import GitRepoManager
from cherrypicker.github_gateway import GitHubGateway
from cherrypicker.models import BranchResult, GitHubEvent
from cherrypicker.observability import configure_logging
from cherrypicker.orchestrator import CherryPickFailures, CherryPickOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cherrypicker")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser(
        "init", help="Prepare the mirror and working copy of every configured repository"
    )
    _add_common_arguments(init_parser)

    handle_parser = subparsers.add_parser(
        "handle", help="Handle GitHub webhook payloads read from JSON files"
    )
    _add_common_arguments(handle_parser)
    handle_parser.add_argument("--event", required=True, choices=SUPPORTED_EVENTS)
    handle_parser.add_argument("payloads", nargs="+", type=Path)

    pick_parser = subparsers.add_parser(
        "pick", help="Cherry-pick a merged pull request onto one or more branches"
    )
    _add_common_arguments(pick_parser)
    pick_parser.add_argument("--repo", required=True, help="Repository as <org>/<repo>")
    pick_parser.add_argument("--pr", required=True, type=int)
    pick_parser.add_argument("--branch", required=True, action="append", dest="branches")

    help_parser = subparsers.add_parser(
        "help-info", help="Show the cherry-pick commands and labels each repository accepts"
    )
    _add_common_arguments(help_parser)
    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=Path("cherrypicker.toml"))
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log outcome events to stderr; repeat for every event",
    )


def main() -> None:
    args = build_parser().parse_args()
    config = load_config(args.config)
    verbose = _verbose_mode(int(getattr(args, "verbose", 0) or 0))
    configure_logging(
        verbose, state_dir=config.runtime.base_dir if verbose is not None else None
    )

    if args.command == "init":
        _cmd_init(config)
        return
    if args.command == "help-info":
        _cmd_help_info(config)
        return

    orchestrator = CherryPickOrchestrator(
        ConfigAgent(args.config, config=config), github=GitHubGateway()
    )
    if args.command == "handle":
        _cmd_handle(orchestrator, event_name=str(args.event), payload_paths=tuple(args.payloads))
        return
    if args.command == "pick":
        _cmd_pick(orchestrator, repo=str(args.repo), pr_number=int(args.pr), branches=args.branches)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _verbose_mode(count: int) -> str | None:
    if count <= 0:
        return None
    if count == 1:
        return "low"
    return "high"


def _cmd_init(config: AppConfig) -> None:
    config.runtime.base_dir.mkdir(parents=True, exist_ok=True)
    print(f"Initialized cherrypicker base dir: {config.runtime.base_dir}")
    for repo in config.repos:
        git_manager = GitRepoManager(config.runtime, repo)
        git_manager.ensure_layout()
        print(f"Repo: {repo.full_name}")
        print(f"Mirror: {git_manager.layout.mirror_path}")
        print(f"Working copy: {git_manager.layout.working_copy}")


def _cmd_help_info(config: AppConfig) -> None:
    for repo in config.repos:
        print(f"repo={repo.full_name}")
        print(f"  comment: {repo.trigger_command} <target-branch>")
        if repo.label_prefix:
            print(f"  label: {repo.label_prefix}<target-branch>")
        if repo.picked_label_prefix:
            print(f"  picked label: {repo.picked_label_prefix}<target-branch>")
        requesters = "anyone" if repo.allow_all else f"members of {repo.owner}"
        print(f"  requests accepted from: {requesters}")
        on_conflict = "open an issue" if repo.create_issue_on_conflict else "comment only"
        print(f"  on conflict: {on_conflict}")


def _cmd_handle(
    orchestrator: CherryPickOrchestrator, *, event_name: str, payload_paths: tuple[Path, ...]
) -> None:
    events: list[GitHubEvent] = []
    for path in payload_paths:
        event = parse_event(event_name, json.loads(path.read_text(encoding="utf-8")))
        if event is None:
            print(f"{path}: ignored")
            continue
        events.append(event)

    failed = 0
    for report in orchestrator.run_events(events):
        label = f"{report.event.org}/{report.event.repo}"
        for result in report.results:
            print(f"{label} {_describe(result)}")
        if report.error is not None:
            failed += 1
            print(f"{label} error={report.error}")
    if failed:
        raise SystemExit(1)


def _cmd_pick(
    orchestrator: CherryPickOrchestrator, *, repo: str, pr_number: int, branches: list[str]
) -> None:
    org, sep, name = repo.strip().partition("/")
    if not sep or not org or not name or "/" in name:
        raise RuntimeError(f"--repo must look like <org>/<repo>, got {repo!r}")
    try:
        results = orchestrator.handle_manual_request(org, name, pr_number, branches)
    except CherryPickFailures as exc:
        for result in exc.results:
            print(_describe(result))
        raise SystemExit(1) from exc
    for result in results:
        print(_describe(result))


def _describe(result: BranchResult) -> str:
    parts = [f"branch={result.target_branch}", f"status={result.status}"]
    if result.pr_number is not None:
        parts.append(f"pr_number={result.pr_number}")
    if result.issue_number is not None:
        parts.append(f"issue_number={result.issue_number}")
    if result.detail:
        first_line = result.detail.strip().splitlines()[0] if result.detail.strip() else ""
        if first_line:
            parts.append(f"detail={first_line}")
    return " ".join(parts)
