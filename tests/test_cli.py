from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from cherrypicker import cli
from cherrypicker.config import AppConfig, RepoConfig, RuntimeConfig
from cherrypicker.models import BranchResult, IssueComment, IssueCommentEvent
from cherrypicker.orchestrator import CherryPickFailures, EventReport


def _app_config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        runtime=RuntimeConfig(
            base_dir=tmp_path / "state",
            bot_login="ti-chi-bot",
            bot_email="bot@example.com",
            worker_count=1,
        ),
        repos=(
            RepoConfig(repo_id="tidb", owner="pingcap", name="tidb"),
            RepoConfig(
                repo_id="tikv",
                owner="tikv",
                name="tikv",
                label_prefix="",
                picked_label_prefix="type/picked-",
                allow_all=True,
                create_issue_on_conflict=True,
            ),
        ),
    )


def _event() -> IssueCommentEvent:
    return IssueCommentEvent(
        org="pingcap",
        repo="tidb",
        action="created",
        issue_number=2,
        issue_state="closed",
        is_pull_request=True,
        comment=IssueComment(
            comment_id=1, body="/cherrypick stage", user_login="wiseguy", html_url="https://c/1"
        ),
    )


def test_build_parser_supports_commands() -> None:
    parser = cli.build_parser()

    parsed_init = parser.parse_args(["init", "-v"])
    parsed_handle = parser.parse_args(
        ["handle", "--event", "issue_comment", "a.json", "b.json", "-vv"]
    )
    parsed_pick = parser.parse_args(
        ["pick", "--repo", "pingcap/tidb", "--pr", "2", "--branch", "stage", "--branch", "rel"]
    )

    assert parsed_init.command == "init"
    assert parsed_init.verbose == 1
    assert parsed_init.config == Path("cherrypicker.toml")
    assert parsed_handle.event == "issue_comment"
    assert parsed_handle.payloads == [Path("a.json"), Path("b.json")]
    assert parsed_handle.verbose == 2
    assert parsed_pick.pr == 2
    assert parsed_pick.branches == ["stage", "rel"]
    assert parsed_pick.verbose == 0


def test_build_parser_rejects_unknown_event() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["handle", "--event", "push", "a.json"])


def test_verbose_mode() -> None:
    assert cli._verbose_mode(0) is None
    assert cli._verbose_mode(1) == "low"
    assert cli._verbose_mode(3) == "high"


def _patch_main(
    monkeypatch: pytest.MonkeyPatch, cfg: AppConfig, args: SimpleNamespace
) -> dict[str, object]:
    class FakeParser:
        def parse_args(self) -> SimpleNamespace:
            return args

    called: dict[str, object] = {}
    monkeypatch.setattr(cli, "build_parser", lambda: FakeParser())
    monkeypatch.setattr(cli, "load_config", lambda p: cfg)

    def fake_configure_logging(verbose: str | None, *, state_dir: Path | None = None) -> None:
        called["logging"] = (verbose, state_dir)

    monkeypatch.setattr(cli, "configure_logging", fake_configure_logging)
    return called


def test_main_dispatches_init(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    cfg = _app_config(tmp_path)
    args = SimpleNamespace(command="init", config=Path("cfg.toml"), verbose=1)
    called = _patch_main(monkeypatch, cfg, args)
    monkeypatch.setattr(cli, "_cmd_init", lambda c: called.setdefault("init", c))

    cli.main()

    assert called["logging"] == ("low", cfg.runtime.base_dir)
    assert called["init"] == cfg


def test_main_dispatches_help_info_without_verbose(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    cfg = _app_config(tmp_path)
    called = _patch_main(monkeypatch, cfg, SimpleNamespace(command="help-info", config=None))
    monkeypatch.setattr(cli, "_cmd_help_info", lambda c: called.setdefault("help", c))

    cli.main()

    assert called["logging"] == (None, None)
    assert called["help"] == cfg


def test_main_dispatches_handle_and_pick(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    cfg = _app_config(tmp_path)
    built: list[object] = []

    class FakeOrchestrator:
        def __init__(self, config_agent: object, *, github: object) -> None:
            built.append((config_agent, github))

    monkeypatch.setattr(cli, "CherryPickOrchestrator", FakeOrchestrator)
    monkeypatch.setattr(cli, "GitHubGateway", lambda: "gh")

    handle_args = SimpleNamespace(
        command="handle",
        config=Path("cfg.toml"),
        verbose=0,
        event="pull_request",
        payloads=[Path("a.json")],
    )
    called = _patch_main(monkeypatch, cfg, handle_args)
    monkeypatch.setattr(
        cli,
        "_cmd_handle",
        lambda orch, *, event_name, payload_paths: called.setdefault(
            "handle", (event_name, payload_paths)
        ),
    )
    cli.main()
    assert called["handle"] == ("pull_request", (Path("a.json"),))

    pick_args = SimpleNamespace(
        command="pick",
        config=Path("cfg.toml"),
        verbose=0,
        repo="pingcap/tidb",
        pr="2",
        branches=["stage"],
    )
    called = _patch_main(monkeypatch, cfg, pick_args)
    monkeypatch.setattr(
        cli,
        "_cmd_pick",
        lambda orch, *, repo, pr_number, branches: called.setdefault(
            "pick", (repo, pr_number, branches)
        ),
    )
    cli.main()
    assert called["pick"] == ("pingcap/tidb", 2, ["stage"])
    assert len(built) == 2
    assert all(github == "gh" for _, github in built)


def test_main_unknown_command_raises(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    cfg = _app_config(tmp_path)
    _patch_main(monkeypatch, cfg, SimpleNamespace(command="unknown", config=None, verbose=0))
    monkeypatch.setattr(cli, "CherryPickOrchestrator", lambda agent, *, github: object())
    monkeypatch.setattr(cli, "GitHubGateway", lambda: "gh")

    with pytest.raises(RuntimeError, match="Unknown command"):
        cli.main()


def test_cmd_init_prepares_every_repo(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg = _app_config(tmp_path)
    prepared: list[str] = []

    class FakeGit:
        def __init__(self, runtime: RuntimeConfig, repo: RepoConfig) -> None:
            self.repo = repo
            self.layout = SimpleNamespace(
                mirror_path=tmp_path / f"{repo.repo_id}.git",
                working_copy=tmp_path / repo.repo_id,
            )

        def ensure_layout(self) -> None:
            prepared.append(self.repo.full_name)

    monkeypatch.setattr(cli, "GitRepoManager", FakeGit)

    cli._cmd_init(cfg)

    assert cfg.runtime.base_dir.exists()
    assert prepared == ["pingcap/tidb", "tikv/tikv"]
    out = capsys.readouterr().out
    assert "Repo: pingcap/tidb" in out
    assert f"Working copy: {tmp_path / 'tikv'}" in out


def test_cmd_help_info(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cli._cmd_help_info(_app_config(tmp_path))

    out = capsys.readouterr().out.splitlines()
    assert out == [
        "repo=pingcap/tidb",
        "  comment: /cherrypick <target-branch>",
        "  label: cherrypick/<target-branch>",
        "  requests accepted from: members of pingcap",
        "  on conflict: comment only",
        "repo=tikv/tikv",
        "  comment: /cherrypick <target-branch>",
        "  picked label: type/picked-<target-branch>",
        "  requests accepted from: anyone",
        "  on conflict: open an issue",
    ]


def test_cmd_handle_prints_results_and_fails_on_errors(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    good = tmp_path / "good.json"
    good.write_text('{"keep": true}', encoding="utf-8")
    skipped = tmp_path / "skipped.json"
    skipped.write_text('{"keep": false}', encoding="utf-8")

    event = _event()
    monkeypatch.setattr(
        cli, "parse_event", lambda name, payload: event if payload["keep"] else None
    )

    class FakeOrchestrator:
        def run_events(self, events: list[object]) -> tuple[EventReport, ...]:
            assert events == [event]
            results = (
                BranchResult(target_branch="stage", status="created", pr_number=9),
                BranchResult(target_branch="rel", status="failed", detail="boom\nmore"),
            )
            failure = CherryPickFailures((("rel", RuntimeError("boom")),), results)
            return (EventReport(event=event, results=results, error=failure),)

    with pytest.raises(SystemExit) as exc_info:
        cli._cmd_handle(
            FakeOrchestrator(),  # type: ignore[arg-type]
            event_name="issue_comment",
            payload_paths=(good, skipped),
        )

    assert exc_info.value.code == 1
    out = capsys.readouterr().out.splitlines()
    assert out == [
        f"{skipped}: ignored",
        "pingcap/tidb branch=stage status=created pr_number=9",
        "pingcap/tidb branch=rel status=failed detail=boom",
        "pingcap/tidb error=cherry-pick failed for branch(es): rel",
    ]


def test_cmd_handle_succeeds_quietly_with_no_events(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    payload = tmp_path / "p.json"
    payload.write_text("{}", encoding="utf-8")
    monkeypatch.setattr(cli, "parse_event", lambda name, data: None)

    class FakeOrchestrator:
        def run_events(self, events: list[object]) -> tuple[EventReport, ...]:
            return ()

    cli._cmd_handle(
        FakeOrchestrator(),  # type: ignore[arg-type]
        event_name="pull_request",
        payload_paths=(payload,),
    )

    assert capsys.readouterr().out == f"{payload}: ignored\n"


def test_cmd_pick_prints_results(capsys: pytest.CaptureFixture[str]) -> None:
    calls: list[tuple[object, ...]] = []

    class FakeOrchestrator:
        def handle_manual_request(
            self, org: str, repo: str, pr_number: int, branches: list[str]
        ) -> tuple[BranchResult, ...]:
            calls.append((org, repo, pr_number, branches))
            return (
                BranchResult(target_branch="stage", status="conflict", issue_number=4),
            )

    cli._cmd_pick(
        FakeOrchestrator(),  # type: ignore[arg-type]
        repo=" pingcap/tidb ",
        pr_number=2,
        branches=["stage"],
    )

    assert calls == [("pingcap", "tidb", 2, ["stage"])]
    assert capsys.readouterr().out == "branch=stage status=conflict issue_number=4\n"


def test_cmd_pick_exits_nonzero_on_failures(capsys: pytest.CaptureFixture[str]) -> None:
    class FakeOrchestrator:
        def handle_manual_request(
            self, org: str, repo: str, pr_number: int, branches: list[str]
        ) -> tuple[BranchResult, ...]:
            result = BranchResult(target_branch="stage", status="failed", detail="no fork")
            raise CherryPickFailures((("stage", RuntimeError("no fork")),), (result,))

    with pytest.raises(SystemExit):
        cli._cmd_pick(
            FakeOrchestrator(),  # type: ignore[arg-type]
            repo="pingcap/tidb",
            pr_number=2,
            branches=["stage"],
        )

    assert capsys.readouterr().out == "branch=stage status=failed detail=no fork\n"


@pytest.mark.parametrize("repo", ["tidb", "pingcap/", "/tidb", "a/b/c"])
def test_cmd_pick_rejects_malformed_repo(repo: str) -> None:
    with pytest.raises(RuntimeError, match="--repo must look like"):
        cli._cmd_pick(
            object(),  # type: ignore[arg-type]
            repo=repo,
            pr_number=2,
            branches=["stage"],
        )


def test_describe_skips_blank_detail() -> None:
    assert cli._describe(BranchResult(target_branch="x", status="skipped", detail="  ")) == (
        "branch=x status=skipped"
    )
