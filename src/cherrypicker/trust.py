from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import Iterable, Protocol

from cherrypicker.config import RepoConfig
from cherrypicker.observability import log_event


LOGGER = logging.getLogger("cherrypicker.trust")


class MembershipSource(Protocol):
    def is_member(self, org: str, login: str) -> bool: ...

    def list_org_members(self, org: str) -> tuple[str, ...]: ...


class TrustProvider(ABC):
    @abstractmethod
    def is_trusted(self, org: str, login: str) -> bool:
        """Return whether `login` may request cherry-picks in `org`."""

    @abstractmethod
    def trusted_subset(self, org: str, logins: Iterable[str]) -> frozenset[str]:
        """Return the trusted members of `logins`, using as few lookups as possible."""


class AllowAllTrust(TrustProvider):
    def is_trusted(self, org: str, login: str) -> bool:
        return bool(login.strip())

    def trusted_subset(self, org: str, logins: Iterable[str]) -> frozenset[str]:
        return frozenset(login for login in logins if login.strip())


class OrgMembershipTrust(TrustProvider):
    def __init__(self, members: MembershipSource) -> None:
        self._members = members

    def is_trusted(self, org: str, login: str) -> bool:
        if not login.strip():
            return False
        trusted = self._members.is_member(org, login)
        log_event(LOGGER, "trust_checked", org=org, login=login, trusted=trusted)
        return trusted

    def trusted_subset(self, org: str, logins: Iterable[str]) -> frozenset[str]:
        candidates = [login for login in logins if login.strip()]
        if not candidates:
            return frozenset()
        members = {login.lower() for login in self._members.list_org_members(org)}
        trusted = frozenset(login for login in candidates if login.lower() in members)
        log_event(
            LOGGER,
            "trust_filtered",
            org=org,
            candidate_count=len(candidates),
            trusted_count=len(trusted),
        )
        return trusted


def trust_provider_for(repo: RepoConfig, members: MembershipSource) -> TrustProvider:
    if repo.allow_all:
        return AllowAllTrust()
    return OrgMembershipTrust(members)
