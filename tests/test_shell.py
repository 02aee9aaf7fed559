from __future__ import annotations

from pathlib import Path
import subprocess

import pytest

from cherrypicker.observability import configure_logging
from cherrypicker.shell import CommandError, _preview, run, run_bytes, run_bytes_result, run_result


def test_run_success(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    called: dict[str, object] = {}

    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        called["args"] = args
        called["kwargs"] = kwargs
        return subprocess.CompletedProcess(args=["echo"], returncode=0, stdout="ok", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)

    out = run(["echo", "hello"], cwd=tmp_path, input_text="hi")

    assert out == "ok"
    kwargs = called["kwargs"]
    assert isinstance(kwargs, dict)
    assert kwargs["cwd"] == str(tmp_path)
    assert kwargs["input"] == "hi"
    assert kwargs["check"] is False


def test_run_failure_raises_with_captured_output(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args, kwargs
        return subprocess.CompletedProcess(args=["bad"], returncode=2, stdout="out", stderr="err")

    monkeypatch.setattr(subprocess, "run", fake_run)
    configure_logging(verbose="high")

    with pytest.raises(CommandError, match="Command failed") as exc_info:
        run(["bad"])
    assert exc_info.value.returncode == 2
    assert exc_info.value.stderr == "err"
    stderr = capsys.readouterr().err
    assert "event=command_failed command=bad exit_code=2" in stderr
    assert "stderr=err" in stderr
    assert "stdout=out" in stderr


def test_run_without_check_returns_stdout(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args, kwargs
        return subprocess.CompletedProcess(
            args=["gh"], returncode=1, stdout="HTTP/2 404", stderr=""
        )

    monkeypatch.setattr(subprocess, "run", fake_run)

    assert run(["gh"], check=False) == "HTTP/2 404"


def test_run_result_never_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args, kwargs
        return subprocess.CompletedProcess(args=["git"], returncode=128, stdout="", stderr="boom")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = run_result(["git", "am"], input_text="patch")

    assert result.ok is False
    assert result.argv == ("git", "am")
    assert result.stderr == "boom"


def test_preview_handles_empty_and_truncation() -> None:
    assert _preview("") == "<empty>"
    assert _preview("x" * 10, limit=4) == "xxxx..."


def test_run_bytes_passes_bytes_through_untouched(monkeypatch: pytest.MonkeyPatch) -> None:
    called: dict[str, object] = {}
    payload = b"-echo old\r\n+echo caf\xe9\r\n"

    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[bytes]:
        called["kwargs"] = kwargs
        return subprocess.CompletedProcess(args=["cat"], returncode=0, stdout=payload, stderr=b"")

    monkeypatch.setattr(subprocess, "run", fake_run)

    assert run_bytes(["cat"], input_bytes=payload) == payload
    kwargs = called["kwargs"]
    assert isinstance(kwargs, dict)
    assert kwargs["input"] == payload
    assert "text" not in kwargs


def test_run_bytes_failure_decodes_output_for_the_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[bytes]:
        _ = args, kwargs
        return subprocess.CompletedProcess(
            args=["git"], returncode=1, stdout=b"caf\xe9", stderr=b"bad \xff byte"
        )

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = run_bytes_result(["git", "am"])
    assert result.ok is False
    assert result.stdout == b"caf\xe9"
    assert result.stderr == "bad � byte"

    with pytest.raises(CommandError) as exc_info:
        run_bytes(["git", "am"])
    assert exc_info.value.stdout == "caf�"
    assert exc_info.value.stderr == "bad � byte"
