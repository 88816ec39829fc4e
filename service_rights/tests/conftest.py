"""
Shared fixtures for Rights Service tests.
"""

import pytest

from service_rights.app.backends.memory import DirectGrantEvaluator, InMemoryAclStore, InMemoryDirectory
from service_rights.app.rights.catalog import YamlRightCatalog
from service_rights.app.rights.command import RightCommand
from service_rights.app.rights.models import EffectiveAttr, EffectiveRights


def build_rights(preset=(), set_all=False, set_attrs=(), get_all=False, get_attrs=(),
                 target_name="", grantee_name="", target_type="account"):
    """Build an EffectiveRights snapshot from right and attribute names."""
    return EffectiveRights(
        target_type=target_type,
        target_id="",
        target_name=target_name,
        grantee_id="",
        grantee_name=grantee_name,
        preset_rights=tuple(preset),
        can_set_all_attrs=set_all,
        can_set_attrs={name: EffectiveAttr(name) for name in set_attrs},
        can_get_all_attrs=get_all,
        can_get_attrs={name: EffectiveAttr(name) for name in get_attrs},
    )


@pytest.fixture
def make_rights():
    return build_rights


@pytest.fixture
def catalog():
    """Catalog bundled with the package."""
    return YamlRightCatalog.from_file()


@pytest.fixture
def directory():
    """Directory with two domains and a handful of accounts."""
    d = InMemoryDirectory()
    d.add_domain("example.com", entry_id="dom-example")
    d.add_domain("other.com", entry_id="dom-other")
    d.add_cos("default", entry_id="cos-default", attrs={"zimbraMailQuota": ("1024",)})
    d.add_server("mail1.example.com", entry_id="srv-1")

    d.add_account("admin@example.com", entry_id="acct-admin", is_admin_account=True)
    d.add_account("da@example.com", entry_id="acct-da", is_delegated_admin_account=True)
    d.add_account("da2@example.com", entry_id="acct-da2", is_delegated_admin_account=True)
    d.add_account("user@example.com", entry_id="acct-user", attrs={"displayName": ("User",)})
    d.add_account("bob@other.com", entry_id="acct-bob")

    d.add_group("admins@example.com", entry_id="grp-admins", is_admin_group=True)
    d.add_group("staff@example.com", entry_id="dl-staff")
    return d


@pytest.fixture
def acl_store():
    return InMemoryAclStore()


@pytest.fixture
def evaluator(catalog, directory, acl_store):
    return DirectGrantEvaluator(catalog, directory, acl_store)


@pytest.fixture
def command(catalog, directory, evaluator, acl_store):
    return RightCommand(catalog, directory, evaluator, acl_store)
