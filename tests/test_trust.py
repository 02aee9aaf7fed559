from __future__ import annotations

from cherrypicker.config import RepoConfig
from cherrypicker.trust import AllowAllTrust, OrgMembershipTrust, trust_provider_for


class FakeMembers:
    def __init__(self, members: tuple[str, ...]) -> None:
        self.members = members
        self.is_member_calls: list[tuple[str, str]] = []
        self.list_calls: list[str] = []

    def is_member(self, org: str, login: str) -> bool:
        self.is_member_calls.append((org, login))
        return login in self.members

    def list_org_members(self, org: str) -> tuple[str, ...]:
        self.list_calls.append(org)
        return self.members


def test_org_membership_trust_checks_single_login() -> None:
    members = FakeMembers(("wiseguy",))
    trust = OrgMembershipTrust(members)

    assert trust.is_trusted("pingcap", "wiseguy") is True
    assert trust.is_trusted("pingcap", "stranger") is False
    assert trust.is_trusted("pingcap", " ") is False
    assert members.is_member_calls == [("pingcap", "wiseguy"), ("pingcap", "stranger")]


def test_org_membership_trust_subset_uses_one_listing() -> None:
    members = FakeMembers(("WiseGuy", "other"))
    trust = OrgMembershipTrust(members)

    trusted = trust.trusted_subset("pingcap", ["wiseguy", "stranger", "", "wiseguy"])

    assert trusted == frozenset({"wiseguy"})
    assert members.list_calls == ["pingcap"]
    assert trust.trusted_subset("pingcap", []) == frozenset()
    assert members.list_calls == ["pingcap"]


def test_allow_all_trusts_any_named_actor() -> None:
    trust = AllowAllTrust()

    assert trust.is_trusted("pingcap", "stranger") is True
    assert trust.is_trusted("pingcap", "") is False
    assert trust.trusted_subset("pingcap", ["a", "", "b"]) == frozenset({"a", "b"})


def test_trust_provider_selected_by_config() -> None:
    members = FakeMembers(())
    strict = RepoConfig(repo_id="tidb", owner="pingcap", name="tidb")
    open_repo = RepoConfig(repo_id="tidb", owner="pingcap", name="tidb", allow_all=True)

    assert isinstance(trust_provider_for(strict, members), OrgMembershipTrust)
    assert isinstance(trust_provider_for(open_repo, members), AllowAllTrust)
