from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import threading
import tomllib
from typing import cast


DEFAULT_TRIGGER_COMMAND = "/cherrypick"
DEFAULT_LABEL_PREFIX = "cherrypick/"


@dataclass(frozen=True)
class RuntimeConfig:
    base_dir: Path
    bot_login: str
    bot_email: str
    worker_count: int = 4


@dataclass(frozen=True)
class RepoConfig:
    repo_id: str
    owner: str
    name: str
    trigger_command: str = DEFAULT_TRIGGER_COMMAND
    label_prefix: str = DEFAULT_LABEL_PREFIX
    picked_label_prefix: str | None = None
    exclude_labels: frozenset[str] = frozenset()
    allow_all: bool = False
    create_issue_on_conflict: bool = False
    remote_url: str | None = None
    local_clone_source: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def effective_remote_url(self) -> str:
        if self.remote_url:
            return self.remote_url
        return f"git@github.com:{self.owner}/{self.name}.git"

    def matches(self, owner: str, name: str) -> bool:
        return (
            self.owner.lower() == owner.strip().lower()
            and self.name.lower() == name.strip().lower()
        )


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    repos: tuple[RepoConfig, ...]

    def repo_for(self, owner: str, name: str) -> RepoConfig | None:
        for repo in self.repos:
            if repo.matches(owner, name):
                return repo
        return None


class ConfigError(ValueError):
    pass


class ConfigAgent:
    """Holds the active configuration and swaps it when the file changes on disk."""

    def __init__(self, path: Path | None = None, *, config: AppConfig | None = None) -> None:
        if path is None and config is None:
            raise ValueError("ConfigAgent requires a path or an initial config")
        self._path = path
        self._lock = threading.Lock()
        self._mtime_ns: int | None = None
        if config is None:
            config, self._mtime_ns = self._load()
        self._config = config

    def current(self) -> AppConfig:
        with self._lock:
            return self._config

    def reload(self) -> bool:
        if self._path is None:
            return False
        mtime_ns = self._path.stat().st_mtime_ns
        with self._lock:
            if self._mtime_ns == mtime_ns:
                return False
        loaded, mtime_ns = self._load()
        with self._lock:
            self._config = loaded
            self._mtime_ns = mtime_ns
        return True

    def _load(self) -> tuple[AppConfig, int]:
        assert self._path is not None
        mtime_ns = self._path.stat().st_mtime_ns
        return load_config(self._path), mtime_ns


def load_config(path: Path) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    runtime_data = _require_table(data, "runtime")
    repo_data = _require_table(data, "repo")

    bot_login = _require_str(runtime_data, "bot_login").strip()
    runtime = RuntimeConfig(
        base_dir=Path(_require_str(runtime_data, "base_dir")).expanduser(),
        bot_login=bot_login,
        bot_email=_str_with_default(
            runtime_data, "bot_email", f"{bot_login}@users.noreply.github.com"
        ),
        worker_count=_int_with_default(runtime_data, "worker_count", 4),
    )
    if runtime.worker_count < 1:
        raise ConfigError("runtime.worker_count must be >= 1")

    return AppConfig(runtime=runtime, repos=_load_repo_configs(repo_data=repo_data))


def _load_repo_configs(*, repo_data: dict[str, object]) -> tuple[RepoConfig, ...]:
    if not repo_data:
        raise ConfigError("[repo] must define at least one [repo.<id>] table")

    repos: list[RepoConfig] = []
    for repo_id, raw_value in sorted(repo_data.items()):
        repo_table = _require_repo_table(raw_value, table_name=f"[repo.{repo_id}]")
        repos.append(_parse_repo_config(repo_id=repo_id, repo_data=repo_table))
    _ensure_unique_full_names(repos)
    return tuple(repos)


def _parse_repo_config(*, repo_id: str, repo_data: dict[str, object]) -> RepoConfig:
    trigger_command = _str_with_default(repo_data, "trigger_command", DEFAULT_TRIGGER_COMMAND)
    if not trigger_command.startswith("/") or any(ch.isspace() for ch in trigger_command):
        raise ConfigError(
            f"[repo.{repo_id}] trigger_command must start with '/' and contain no whitespace"
        )
    return RepoConfig(
        repo_id=repo_id,
        owner=_require_str(repo_data, "owner"),
        name=_str_with_default(repo_data, "name", repo_id),
        trigger_command=trigger_command,
        label_prefix=_str_with_default(repo_data, "label_prefix", DEFAULT_LABEL_PREFIX),
        picked_label_prefix=_optional_str(repo_data, "picked_label_prefix"),
        exclude_labels=frozenset(_tuple_of_str(repo_data, "exclude_labels")),
        allow_all=_bool_with_default(repo_data, "allow_all", False),
        create_issue_on_conflict=_bool_with_default(repo_data, "create_issue_on_conflict", False),
        remote_url=_optional_str(repo_data, "remote_url"),
        local_clone_source=_optional_str(repo_data, "local_clone_source"),
    )


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _require_repo_table(value: object, *, table_name: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise ConfigError(f"{table_name} must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"{table_name} must have string keys")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _tuple_of_str(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{key} must be a list of non-empty strings")
        if item not in out:
            out.append(item)
    return tuple(out)


def _ensure_unique_full_names(repos: list[RepoConfig]) -> None:
    seen: dict[str, str] = {}
    for repo in repos:
        key = repo.full_name.lower()
        existing_id = seen.get(key)
        if existing_id is not None:
            raise ConfigError(
                f"Duplicate repo full_name {repo.full_name!r} across repo ids "
                f"{existing_id!r} and {repo.repo_id!r}"
            )
        seen[key] = repo.repo_id
