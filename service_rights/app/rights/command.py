"""
Rights protocol: effective-rights queries and grant/revoke.

Every operation runs synchronously to completion against the collaborators
it was built with and either returns a value or raises one of the
``shared.errors`` access control exceptions. Nothing is retried here.
"""

from typing import Any, Dict, List, Optional

from shared.errors import (
    ConfigurationError,
    InvalidRequestError,
    NotFoundError,
    NotFoundKind,
    NoSuchGrantError,
    PermissionDeniedError,
)
from shared.logging import get_logger
from .aggregation import AllEffectiveRights
from .interfaces import AclStore, Directory, Entry, RightCatalog, RuleEvaluator, ViaGrant
from .models import (
    ACE, ACL, EffectiveRights, EffectiveRightsBuilder, GranteeBy, GranteeType, Right,
    RightModifier, RightType, TargetBy, TargetType,
)

CROSS_DOMAIN_ADMIN_RIGHT = "crossDomainAdmin"

# grantee lookups that fail with these may still revoke an orphaned grant by id
_ORPHAN_KINDS = frozenset({NotFoundKind.ACCOUNT, NotFoundKind.GROUP, NotFoundKind.DOMAIN})


def validate_cross_domain_admin_grant(right: Right, grantee_type: GranteeType) -> bool:
    """True if this is a cross domain admin grant, which only a domain may receive."""
    if right.name != CROSS_DOMAIN_ADMIN_RIGHT:
        return False
    if grantee_type != GranteeType.DOMAIN:
        raise InvalidRequestError(
            f"grantee for right {CROSS_DOMAIN_ADMIN_RIGHT} must be a domain",
            {"check": "grantee", "right": right.name, "grantee_type": grantee_type.value}
        )
    return True


def is_valid_grantee_for_admin_rights(grantee_type: GranteeType, grantee: Entry) -> bool:
    if grantee_type == GranteeType.USER:
        return grantee.is_delegated_admin_account and not grantee.is_admin_account
    if grantee_type == GranteeType.GROUP:
        return grantee.is_admin_group
    return False


class RightCommand:
    """Entry point for every rights operation."""

    def __init__(self, catalog: RightCatalog, directory: Directory,
                 evaluator: RuleEvaluator, acl_store: AclStore):
        if not evaluator.supports_delegation_checks:
            raise ConfigurationError(
                f"rights protocol is not supported by rule evaluator {type(evaluator).__name__}, "
                "it requires an evaluator that supports delegation checks"
            )
        self.catalog = catalog
        self.directory = directory
        self.evaluator = evaluator
        self.acl_store = acl_store
        self.logger = get_logger("rights.command")

    # ------------------------------------------------------------------
    # rights catalog
    # ------------------------------------------------------------------

    def get_right(self, right_name: str) -> Right:
        return self.catalog.get_right(right_name)

    def get_all_rights(self, target_type: Optional[str] = None) -> List[Right]:
        """
        Admin rights that can be granted on ``target_type`` (all admin rights
        when it is None).

        This is not the same as rights executable on the type: renameAccount
        executes on accounts but can be granted on a domain, a distribution
        list or an account.
        """
        tt = TargetType.from_string(target_type) if target_type else None
        rights = [
            right for right in self.catalog.get_all_admin_rights().values()
            if tt is None or right.grantable_on_target_type(tt)
        ]
        return sorted(rights, key=lambda r: r.name)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def check_right(self, target_type: str, target_by: TargetBy, target: str,
                    grantee_by: GranteeBy, grantee: str, right: str,
                    attrs: Optional[Dict[str, Any]] = None,
                    via: Optional[ViaGrant] = None) -> bool:
        tt = TargetType.from_string(target_type)
        target_entry = self.directory.lookup_target(tt, target_by, target)
        grantee_acct = self._lookup_grantee_account(grantee_by, grantee)
        r = self.catalog.get_right(right)

        if r.right_type != RightType.SET_ATTRS and attrs:
            raise InvalidRequestError(
                f"attr map is not allowed for checking a non-setAttrs right: {r.name}"
            )

        allowed = self.evaluator.can_perform(grantee_acct, target_entry, r, False, attrs, via)
        self.logger.debug(
            "Right checked",
            target=target_entry.label,
            grantee=grantee_acct.name,
            right=r.name,
            allowed=allowed
        )
        return allowed

    def get_all_effective_rights(self, grantee_type: str, grantee_by: GranteeBy, grantee: str,
                                 expand_set_attrs: bool = False,
                                 expand_get_attrs: bool = False) -> AllEffectiveRights:
        gt = GranteeType.from_code(grantee_type)
        grantee_entry = self.directory.lookup_grantee(gt, grantee_by, grantee)

        aer = AllEffectiveRights(gt.value, grantee_entry.entry_id or "", grantee_entry.name)
        self.evaluator.get_all_effective_rights(grantee_entry, expand_set_attrs, expand_get_attrs, aer)
        return aer

    def get_effective_rights(self, target_type: str, target_by: TargetBy, target: str,
                             grantee_by: GranteeBy, grantee: str,
                             expand_set_attrs: bool = False,
                             expand_get_attrs: bool = False) -> EffectiveRights:
        tt = TargetType.from_string(target_type)
        target_entry = self.directory.lookup_target(tt, target_by, target)
        grantee_acct = self._lookup_grantee_account(grantee_by, grantee)
        return self._effective_rights(tt, target_entry, grantee_acct, expand_set_attrs, expand_get_attrs)

    def get_create_object_attrs(self, target_type: str,
                                domain_by: Optional[TargetBy], domain: Optional[str],
                                cos_by: Optional[TargetBy], cos: Optional[str],
                                grantee_by: GranteeBy, grantee: str) -> EffectiveRights:
        """Rights a grantee would have on an object of ``target_type`` not created yet."""
        tt = TargetType.from_string(target_type)
        target_entry = self.directory.create_pseudo_target(tt, domain_by, domain, cos_by, cos)
        grantee_acct = self._lookup_grantee_account(grantee_by, grantee)
        return self._effective_rights(tt, target_entry, grantee_acct, True, True)

    def get_grants(self, target_type: str, target_by: TargetBy, target: str) -> ACL:
        tt = TargetType.from_string(target_type)
        target_entry = self.directory.lookup_target(tt, target_by, target)
        return ACL(self.acl_store.get_acl(target_entry))

    def _lookup_grantee_account(self, grantee_by: GranteeBy, grantee: str) -> Entry:
        entry = self.directory.lookup_grantee(GranteeType.USER, grantee_by, grantee)
        if entry.kind != TargetType.ACCOUNT:
            raise InvalidRequestError(
                f"grantee {grantee} must be an account",
                {"check": "grantee", "grantee_kind": entry.kind.value}
            )
        return entry

    def _effective_rights(self, target_type: TargetType, target_entry: Entry, grantee_acct: Entry,
                          expand_set_attrs: bool, expand_get_attrs: bool) -> EffectiveRights:
        builder = EffectiveRightsBuilder(
            target_type.value, target_entry.entry_id, target_entry.label,
            grantee_acct.entry_id or "", grantee_acct.name
        )
        self.evaluator.get_effective_rights(
            grantee_acct, target_entry, expand_set_attrs, expand_get_attrs, builder
        )
        return builder.build()

    # ------------------------------------------------------------------
    # grant / revoke
    # ------------------------------------------------------------------

    def _verify_grant(self, authed_account: Optional[Entry],
                      target_type: TargetType, target_entry: Entry,
                      grantee_type: GranteeType, grantee_entry: Entry,
                      right: Right, revoking: bool):
        operation = "revoke" if revoking else "grant"

        # self-service rights are not subject to the delegated admin checks
        if not right.is_user_right:
            # the grantee may have lost admin privilege since the grant was made
            if not revoking:
                is_cda_right = validate_cross_domain_admin_grant(right, grantee_type)
                if not is_cda_right and not is_valid_grantee_for_admin_rights(grantee_type, grantee_entry):
                    raise InvalidRequestError(
                        "grantee must be a delegated admin account or admin group, "
                        "it cannot be a global admin account.",
                        {"check": "grantee", "grantee": grantee_entry.name, "grantee_type": grantee_type.value}
                    )

            if not right.grantable_on_target_type(target_type):
                raise InvalidRequestError(
                    f"right {right.name} cannot be granted on a {target_type.value} entry. "
                    f"It can only be granted on target types: {right.report_grantable_target_types()}",
                    {
                        "check": "target_type",
                        "right": right.name,
                        "target_type": target_type.value,
                        "valid_target_types": sorted(tt.value for tt in right.grantable_target_types),
                    }
                )

        # a None actor is the trusted system caller
        if authed_account is not None:
            can_grant = self.evaluator.can_perform(authed_account, target_entry, right, True, None, None)
            if not can_grant:
                raise PermissionDeniedError(
                    f"insufficient right to {operation}",
                    {"check": "delegation", "right": right.name, "actor": authed_account.name}
                )
            try:
                self.evaluator.check_partially_denied(authed_account, target_type, target_entry, right)
            except PermissionDeniedError as e:
                e.details.setdefault("check", "partial_denial")
                raise

    def grant_right(self, authed_account: Optional[Entry],
                    target_type: str, target_by: TargetBy, target: str,
                    grantee_type: str, grantee_by: GranteeBy, grantee: str,
                    right: str, right_modifier: Optional[RightModifier] = None) -> ACE:
        tt = TargetType.from_string(target_type)
        target_entry = self.directory.lookup_target(tt, target_by, target)

        gt = GranteeType.from_code(grantee_type)
        grantee_entry = self.directory.lookup_grantee(gt, grantee_by, grantee)

        r = self.catalog.get_right(right)

        try:
            self._verify_grant(authed_account, tt, target_entry, gt, grantee_entry, r, False)
        except (InvalidRequestError, PermissionDeniedError) as e:
            self.logger.warning(
                "Grant rejected",
                target=target_entry.label,
                grantee=grantee_entry.name,
                right=r.name,
                check=e.details.get("check"),
                reason=e.message
            )
            raise

        ace = ACE(gt.value, grantee_entry.entry_id or "", grantee_entry.name, r.name, right_modifier)
        self.acl_store.add_grant(target_entry, {ace})

        self.logger.info(
            "Right granted",
            target_type=tt.value,
            target=target_entry.label,
            grantee=grantee_entry.name,
            right=r.name,
            modifier=right_modifier.value if right_modifier else None
        )
        return ace

    def revoke_right(self, authed_account: Optional[Entry],
                     target_type: str, target_by: TargetBy, target: str,
                     grantee_type: str, grantee_by: GranteeBy, grantee: str,
                     right: str, right_modifier: Optional[RightModifier] = None) -> List[ACE]:
        tt = TargetType.from_string(target_type)
        target_entry = self.directory.lookup_target(tt, target_by, target)

        gt = GranteeType.from_code(grantee_type)
        grantee_entry: Optional[Entry] = None
        try:
            grantee_entry = self.directory.lookup_grantee(gt, grantee_by, grantee)
            grantee_id = grantee_entry.entry_id or ""
            grantee_name = grantee_entry.name
        except NotFoundError as e:
            if e.kind not in _ORPHAN_KINDS:
                raise
            self.logger.warning("revokeRight: no such grantee", grantee=grantee, grantee_by=grantee_by.value)

            # the grantee was probably deleted; by id we can still remove the orphan grant
            if grantee_by != GranteeBy.ID:
                raise InvalidRequestError(
                    f"cannot find grantee by name: {grantee}, "
                    "try revoke by grantee id if you want to remove the orphan grant",
                    {"check": "grantee", "grantee": grantee}
                ) from e
            grantee_id = grantee
            grantee_name = ""

        r = self.catalog.get_right(right)

        if grantee_entry is not None:
            self._verify_grant(authed_account, tt, target_entry, gt, grantee_entry, r, True)

        ace = ACE(gt.value, grantee_id, grantee_name, r.name, right_modifier)
        revoked = self.acl_store.remove_grant(target_entry, {ace})
        if not revoked:
            raise NoSuchGrantError(
                f"no such grant: {ace.describe()}",
                {"target": target_entry.label, "right": r.name, "grantee_id": grantee_id}
            )

        self.logger.info(
            "Right revoked",
            target_type=tt.value,
            target=target_entry.label,
            grantee_id=grantee_id,
            right=r.name,
            orphan=grantee_entry is None
        )
        return revoked
