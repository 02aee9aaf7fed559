from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging
import subprocess
from typing import NoReturn


class CommandError(RuntimeError):
    def __init__(self, message: str, *, returncode: int, stdout: str, stderr: str) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


LOGGER = logging.getLogger("cherrypicker.shell")


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run_result(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
) -> CommandResult:
    proc = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        input=input_text,
        text=True,
        capture_output=True,
        check=False,
    )
    return CommandResult(
        argv=tuple(argv),
        returncode=proc.returncode,
        stdout=proc.stdout,
        stderr=proc.stderr,
    )


def run(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    check: bool = True,
) -> str:
    result = run_result(argv, cwd=cwd, input_text=input_text)
    if check and not result.ok:
        _raise_command_error(
            argv, returncode=result.returncode, stdout=result.stdout, stderr=result.stderr
        )
    return result.stdout


def _raise_command_error(
    argv: list[str], *, returncode: int, stdout: str, stderr: str
) -> NoReturn:
    LOGGER.error(
        "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
        " ".join(argv),
        returncode,
        _preview(stderr),
        _preview(stdout),
    )
    raise CommandError(
        "Command failed\n"
        f"cmd: {' '.join(argv)}\n"
        f"exit: {returncode}\n"
        f"stdout:\n{stdout}\n"
        f"stderr:\n{stderr}",
        returncode=returncode,
        stdout=stdout,
        stderr=stderr,
    )


@dataclass(frozen=True)
class BinaryCommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: bytes
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_bytes_result(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_bytes: bytes | None = None,
) -> BinaryCommandResult:
    """Like `run_result`, but stdin and stdout are passed through untouched."""
    proc = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        input=input_bytes,
        capture_output=True,
        check=False,
    )
    return BinaryCommandResult(
        argv=tuple(argv),
        returncode=proc.returncode,
        stdout=proc.stdout,
        stderr=proc.stderr.decode("utf-8", errors="replace"),
    )


def run_bytes(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_bytes: bytes | None = None,
    check: bool = True,
) -> bytes:
    result = run_bytes_result(argv, cwd=cwd, input_bytes=input_bytes)
    if check and not result.ok:
        _raise_command_error(
            argv,
            returncode=result.returncode,
            stdout=result.stdout.decode("utf-8", errors="replace"),
            stderr=result.stderr,
        )
    return result.stdout
