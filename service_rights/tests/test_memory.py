"""
Unit tests for the in-memory directory, ACL store and evaluator.
"""

import pytest

from shared.errors import (
    ConfigurationError, InvalidRequestError, NoSuchAccountError, NoSuchDomainError, NoSuchGroupError,
    NotFoundError, NotFoundKind, PermissionDeniedError,
)
from service_rights.app.backends.memory import InMemoryDirectory
from service_rights.app.rights.interfaces import ViaGrant
from service_rights.app.rights.models import (
    ACE, EffectiveRightsBuilder, GranteeBy, GranteeType, RightModifier, TargetBy, TargetType,
)


class TestInMemoryDirectory:
    """Test cases for InMemoryDirectory."""

    def test_lookup_by_id_and_name(self, directory):
        by_id = directory.lookup_target(TargetType.ACCOUNT, TargetBy.ID, "acct-user")
        by_name = directory.lookup_target(TargetType.ACCOUNT, TargetBy.NAME, "User@Example.com")

        assert by_id == by_name
        assert by_id.domain_name == "example.com"

    def test_not_found_kinds(self, directory):
        with pytest.raises(NoSuchAccountError):
            directory.lookup_grantee(GranteeType.USER, GranteeBy.ID, "acct-gone")
        with pytest.raises(NoSuchGroupError):
            directory.lookup_grantee(GranteeType.GROUP, GranteeBy.NAME, "gone@example.com")
        with pytest.raises(NoSuchDomainError):
            directory.lookup_grantee(GranteeType.DOMAIN, GranteeBy.NAME, "gone.com")
        with pytest.raises(NotFoundError) as exc_info:
            directory.lookup_target(TargetType.SERVER, TargetBy.NAME, "mail9")
        assert exc_info.value.kind == NotFoundKind.SERVER

    def test_singletons(self, directory):
        config = directory.lookup_target(TargetType.CONFIG, TargetBy.NAME, "")
        assert config.kind == TargetType.CONFIG
        assert directory.lookup_target(TargetType.GLOBAL, TargetBy.ID, "anything") is directory.global_grant_entry

    def test_account_needs_existing_domain(self, directory):
        with pytest.raises(NoSuchDomainError):
            directory.add_account("a@nowhere.com")

    def test_duplicate_name(self, directory):
        with pytest.raises(InvalidRequestError):
            directory.add_account("user@example.com")

    def test_duplicate_id(self, directory):
        with pytest.raises(InvalidRequestError):
            directory.add_account("someone@example.com", entry_id="acct-user")

        assert directory.lookup_target(TargetType.ACCOUNT, TargetBy.ID, "acct-user").name == "user@example.com"
        with pytest.raises(NoSuchAccountError):
            directory.lookup_target(TargetType.ACCOUNT, TargetBy.NAME, "someone@example.com")

    def test_pseudo_account_inherits_cos(self, directory):
        pseudo = directory.create_pseudo_target(
            TargetType.ACCOUNT, TargetBy.NAME, "example.com", TargetBy.ID, "cos-default"
        )

        assert pseudo.is_pseudo
        assert pseudo.entry_id is None
        assert pseudo.domain_name == "example.com"
        assert pseudo.attrs["zimbraMailQuota"] == ("1024",)

    def test_pseudo_domain(self, directory):
        pseudo = directory.create_pseudo_target(TargetType.DOMAIN, TargetBy.NAME, "example.com", None, None)
        assert pseudo.name == "pseudo.example.com"

    def test_list_entries(self, directory):
        names = [e.name for e in directory.list_entries(TargetType.DOMAIN)]
        assert names == ["example.com", "other.com"]


class TestDirectorySeedFile:
    """Test cases for InMemoryDirectory.from_file."""

    def test_from_file(self, tmp_path):
        path = tmp_path / "directory.yaml"
        path.write_text(
            "domains:\n"
            "  - {name: example.com, id: dom-example}\n"
            "cos:\n"
            "  - {name: default, attrs: {zimbraMailQuota: 1024}}\n"
            "servers:\n"
            "  - {name: mail1.example.com}\n"
            "accounts:\n"
            "  - {name: admin@example.com, id: acct-admin, admin: true}\n"
            "  - {name: da@example.com, delegatedAdmin: true, attrs: {displayName: [DA]}}\n"
            "calresources:\n"
            "  - {name: room1@example.com}\n"
            "groups:\n"
            "  - {name: admins@example.com, adminGroup: true}\n"
        )

        directory = InMemoryDirectory.from_file(path)

        admin = directory.lookup_target(TargetType.ACCOUNT, TargetBy.ID, "acct-admin")
        assert admin.is_admin_account
        assert admin.domain_name == "example.com"
        da = directory.lookup_grantee(GranteeType.USER, GranteeBy.NAME, "da@example.com")
        assert da.is_delegated_admin_account
        assert da.attrs == {"displayName": ("DA",)}
        cos = directory.lookup_target(TargetType.COS, TargetBy.NAME, "default")
        assert cos.attrs == {"zimbraMailQuota": ("1024",)}
        assert directory.lookup_target(TargetType.CALRESOURCE, TargetBy.NAME, "room1@example.com")
        assert directory.lookup_grantee(GranteeType.GROUP, GranteeBy.NAME, "admins@example.com").is_admin_group
        assert [e.name for e in directory.list_entries(TargetType.SERVER)] == ["mail1.example.com"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            InMemoryDirectory.from_file(tmp_path / "missing.yaml")

    def test_account_in_unknown_domain(self, tmp_path):
        path = tmp_path / "directory.yaml"
        path.write_text("accounts:\n  - {name: a@nowhere.com}\n")

        with pytest.raises(ConfigurationError) as exc_info:
            InMemoryDirectory.from_file(path)
        assert "nowhere.com" in exc_info.value.message

    def test_entry_without_name(self, tmp_path):
        path = tmp_path / "directory.yaml"
        path.write_text("domains:\n  - {id: dom-1}\n")

        with pytest.raises(ConfigurationError):
            InMemoryDirectory.from_file(path)


class TestInMemoryAclStore:
    """Test cases for InMemoryAclStore."""

    @pytest.fixture
    def target(self, directory):
        return directory.lookup_target(TargetType.ACCOUNT, TargetBy.ID, "acct-user")

    def test_regrant_replaces_modifier(self, acl_store, target):
        acl_store.add_grant(target, [ACE("usr", "acct-da", "da", "renameAccount")])
        acl_store.add_grant(target, [ACE("usr", "acct-da", "da", "renameAccount", RightModifier.DENY)])

        assert list(acl_store.get_acl(target)) == [
            ACE("usr", "acct-da", "da", "renameAccount", RightModifier.DENY)
        ]

    def test_remove_returns_removed(self, acl_store, target):
        ace = ACE("usr", "acct-da", "da", "renameAccount")
        acl_store.add_grant(target, [ace])

        assert acl_store.remove_grant(target, [ace, ACE("usr", "acct-da", "da", "deleteAccount")]) == [ace]
        assert acl_store.remove_grant(target, [ace]) == []

    def test_pseudo_target_rejected(self, acl_store, directory):
        pseudo = directory.create_pseudo_target(TargetType.SERVER, None, None, None, None)
        with pytest.raises(InvalidRequestError):
            acl_store.add_grant(pseudo, [ACE("usr", "acct-da", "da", "flushCache")])


class TestDirectGrantEvaluator:
    """Test cases for DirectGrantEvaluator."""

    @pytest.fixture
    def da(self, directory):
        return directory.lookup_target(TargetType.ACCOUNT, TargetBy.ID, "acct-da")

    @pytest.fixture
    def user(self, directory):
        return directory.lookup_target(TargetType.ACCOUNT, TargetBy.ID, "acct-user")

    def grant_on(self, acl_store, entry, right, modifier=None):
        acl_store.add_grant(entry, [ACE("usr", "acct-da", "da@example.com", right, modifier)])

    def test_global_grant_applies_everywhere(self, evaluator, acl_store, directory, da, user, catalog):
        self.grant_on(acl_store, directory.global_grant_entry, "renameAccount")
        via = ViaGrant()

        assert evaluator.can_perform(da, user, catalog.get_right("renameAccount"), False, None, via)
        assert via.target_type == "global"

    def test_deny_wins(self, evaluator, acl_store, directory, da, user, catalog):
        domain = directory.lookup_target(TargetType.DOMAIN, TargetBy.NAME, "example.com")
        self.grant_on(acl_store, domain, "domainAdminAccountRights")
        self.grant_on(acl_store, user, "deleteAccount", RightModifier.DENY)

        assert evaluator.can_perform(da, user, catalog.get_right("renameAccount"), False)
        assert not evaluator.can_perform(da, user, catalog.get_right("deleteAccount"), False)

    def test_for_grant_requires_can_delegate(self, evaluator, acl_store, da, user, catalog):
        self.grant_on(acl_store, user, "renameAccount")
        right = catalog.get_right("renameAccount")

        assert evaluator.can_perform(da, user, right, False)
        assert not evaluator.can_perform(da, user, right, True)

    def test_check_partially_denied(self, evaluator, acl_store, da, user, catalog):
        self.grant_on(acl_store, user, "deleteAccount", RightModifier.DENY)

        with pytest.raises(PermissionDeniedError) as exc_info:
            evaluator.check_partially_denied(
                da, TargetType.ACCOUNT, user, catalog.get_right("domainAdminAccountRights")
            )
        assert exc_info.value.details["denied_rights"] == ["deleteAccount"]
        evaluator.check_partially_denied(da, TargetType.ACCOUNT, user, catalog.get_right("renameAccount"))

    def test_effective_rights_specific_attrs(self, evaluator, acl_store, da, user):
        self.grant_on(acl_store, user, "getAccountName")
        builder = EffectiveRightsBuilder("account", user.entry_id, user.name, da.entry_id, da.name)

        evaluator.get_effective_rights(da, user, False, False, builder)
        er = builder.build()

        assert not er.can_get_all_attrs
        assert list(er.can_get_attrs) == ["displayName", "givenName", "sn"]
        assert er.can_get_attrs["displayName"].default_values == {"User"}
        assert er.preset_rights == ()
