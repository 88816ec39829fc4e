"""
In-memory directory, ACL store and rule evaluator.

These back the service when it runs standalone and the protocol tests.
The evaluator only honours grants made directly on the target, on the
target's domain and on the global grant target. It does not walk group
membership or domain hierarchies.
"""

import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

import yaml

from shared.errors import (
    AccessControlException,
    ConfigurationError,
    InvalidRequestError,
    NoSuchAccountError,
    NoSuchDomainError,
    NoSuchGroupError,
    NotFoundError,
    NotFoundKind,
    PermissionDeniedError,
)
from shared.logging import get_logger
from ..rights.aggregation import AllEffectiveRights
from ..rights.interfaces import AclStore, Directory, Entry, RightCatalog, RuleEvaluator, ViaGrant
from ..rights.models import (
    ACE, ACL, AttrRight, EffectiveAttr, EffectiveRights, EffectiveRightsBuilder, GranteeBy, GranteeType, Right,
    RightType, TargetBy, TargetType,
)

GLOBAL_CONFIG_NAME = "globalconfig"
GLOBAL_GRANT_NAME = "globalacltarget"


def _not_found(kind: TargetType, identifier: str) -> NotFoundError:
    if kind in (TargetType.ACCOUNT, TargetType.CALRESOURCE):
        return NoSuchAccountError(identifier)
    if kind == TargetType.DL:
        return NoSuchGroupError(identifier)
    if kind == TargetType.DOMAIN:
        return NoSuchDomainError(identifier)
    if kind == TargetType.COS:
        return NotFoundError(NotFoundKind.COS, identifier)
    if kind == TargetType.SERVER:
        return NotFoundError(NotFoundKind.SERVER, identifier)
    return NotFoundError(NotFoundKind.ENTRY, identifier)


_GRANTEE_KINDS = {
    GranteeType.USER: TargetType.ACCOUNT,
    GranteeType.GROUP: TargetType.DL,
    GranteeType.DOMAIN: TargetType.DOMAIN,
}


def _seed_attrs(item: Mapping[str, Any]) -> Dict[str, Tuple[str, ...]]:
    return {
        name: tuple(str(v) for v in (values if isinstance(values, list) else [values]))
        for name, values in (item.get("attrs") or {}).items()
    }


def _hides_empty(summary: EffectiveRights, members: Iterable[EffectiveRights]) -> bool:
    return not summary.has_no_right() and any(er.has_no_right() for er in members)


class InMemoryDirectory(Directory):
    """Directory held in dictionaries, keyed by entry kind."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_id: Dict[TargetType, Dict[str, Entry]] = {tt: {} for tt in TargetType}
        self._by_name: Dict[TargetType, Dict[str, Entry]] = {tt: {} for tt in TargetType}
        self._config = Entry(None, GLOBAL_CONFIG_NAME, TargetType.CONFIG)
        self._global = Entry(None, GLOBAL_GRANT_NAME, TargetType.GLOBAL)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryDirectory":
        """
        Seed a directory from a YAML document::

            domains:
              - {name: example.com, id: dom-example}
            cos:
              - {name: default, attrs: {zimbraMailQuota: ["1024"]}}
            servers:
              - {name: mail1.example.com}
            accounts:
              - {name: admin@example.com, admin: true}
              - {name: da@example.com, delegatedAdmin: true}
            calresources:
              - {name: room1@example.com}
            groups:
              - {name: admins@example.com, adminGroup: true}

        Domains are loaded first so accounts and groups can refer to them.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"cannot load directory {path}: {e}") from e

        directory = cls()
        try:
            for item in data.get("domains") or ():
                directory.add_domain(item["name"], item.get("id"))
            for item in data.get("cos") or ():
                directory.add_cos(item["name"], item.get("id"), _seed_attrs(item))
            for item in data.get("servers") or ():
                directory.add_server(item["name"], item.get("id"))
            for section, kind in (("accounts", TargetType.ACCOUNT), ("calresources", TargetType.CALRESOURCE)):
                for item in data.get(section) or ():
                    directory.add_account(
                        item["name"], item.get("id"), kind=kind,
                        is_admin_account=bool(item.get("admin", False)),
                        is_delegated_admin_account=bool(item.get("delegatedAdmin", False)),
                        attrs=_seed_attrs(item),
                    )
            for item in data.get("groups") or ():
                directory.add_group(item["name"], item.get("id"), is_admin_group=bool(item.get("adminGroup", False)))
        except KeyError as e:
            raise ConfigurationError(f"directory {path}: entry without {e}") from None
        except AccessControlException as e:
            raise ConfigurationError(f"directory {path}: {e.message}") from e
        return directory

    @property
    def global_grant_entry(self) -> Entry:
        return self._global

    def add(self, entry: Entry) -> Entry:
        if entry.kind in (TargetType.CONFIG, TargetType.GLOBAL):
            raise InvalidRequestError(f"{entry.kind.value} is a singleton entry")
        with self._lock:
            if entry.name.lower() in self._by_name[entry.kind]:
                raise InvalidRequestError(f"{entry.kind.value} {entry.name} already exists")
            if entry.entry_id in self._by_id[entry.kind]:
                raise InvalidRequestError(f"{entry.kind.value} id {entry.entry_id} already exists")
            self._by_id[entry.kind][entry.entry_id] = entry
            self._by_name[entry.kind][entry.name.lower()] = entry
        return entry

    def remove(self, entry: Entry):
        with self._lock:
            self._by_id[entry.kind].pop(entry.entry_id, None)
            self._by_name[entry.kind].pop(entry.name.lower(), None)

    def add_domain(self, name: str, entry_id: Optional[str] = None, **kwargs) -> Entry:
        return self.add(Entry(entry_id or str(uuid.uuid4()), name, TargetType.DOMAIN, **kwargs))

    def add_cos(self, name: str, entry_id: Optional[str] = None,
                attrs: Optional[Mapping[str, Tuple[str, ...]]] = None) -> Entry:
        return self.add(Entry(entry_id or str(uuid.uuid4()), name, TargetType.COS, attrs=dict(attrs or {})))

    def add_server(self, name: str, entry_id: Optional[str] = None) -> Entry:
        return self.add(Entry(entry_id or str(uuid.uuid4()), name, TargetType.SERVER))

    def add_account(self, name: str, entry_id: Optional[str] = None, kind: TargetType = TargetType.ACCOUNT,
                    **kwargs) -> Entry:
        """Add an account, calendar resource or distribution list named ``local@domain``."""
        domain_name = name.split("@", 1)[1] if "@" in name else None
        if domain_name is not None and domain_name.lower() not in self._by_name[TargetType.DOMAIN]:
            raise NoSuchDomainError(domain_name)
        return self.add(Entry(entry_id or str(uuid.uuid4()), name, kind, domain_name=domain_name, **kwargs))

    def add_group(self, name: str, entry_id: Optional[str] = None, is_admin_group: bool = False) -> Entry:
        return self.add_account(name, entry_id, kind=TargetType.DL, is_admin_group=is_admin_group)

    def lookup_target(self, target_type: TargetType, target_by: TargetBy, target: str) -> Entry:
        if target_type == TargetType.CONFIG:
            return self._config
        if target_type == TargetType.GLOBAL:
            return self._global
        return self._lookup(target_type, target_by, target)

    def lookup_grantee(self, grantee_type: GranteeType, grantee_by: GranteeBy, grantee: str) -> Entry:
        kind = _GRANTEE_KINDS.get(grantee_type)
        if kind is None:
            raise InvalidRequestError(f"invalid grantee type for lookupGrantee: {grantee_type.value}")
        return self._lookup(kind, TargetBy(grantee_by.value), grantee)

    def create_pseudo_target(self, target_type: TargetType,
                             domain_by: Optional[TargetBy], domain: Optional[str],
                             cos_by: Optional[TargetBy], cos: Optional[str]) -> Entry:
        domain_entry = None
        if domain:
            domain_entry = self._lookup(TargetType.DOMAIN, domain_by or TargetBy.NAME, domain)

        if target_type in (TargetType.ACCOUNT, TargetType.CALRESOURCE, TargetType.DL):
            if domain_entry is None:
                raise InvalidRequestError(f"domain is required for a pseudo {target_type.value} target")
            cos_entry = self._lookup(TargetType.COS, cos_by or TargetBy.NAME, cos) if cos else None
            return Entry(
                None, f"pseudo.pseudo@{domain_entry.name}", target_type,
                domain_name=domain_entry.name,
                cos_id=cos_entry.entry_id if cos_entry else None,
                is_pseudo=True,
                attrs=dict(cos_entry.attrs) if cos_entry else {},
            )
        if target_type == TargetType.DOMAIN:
            # a sub domain of the given domain, or a top level pseudo domain
            parent = f".{domain_entry.name}" if domain_entry else ""
            return Entry(None, f"pseudo{parent}", target_type, is_pseudo=True)
        if target_type in (TargetType.COS, TargetType.SERVER):
            return Entry(None, "pseudo", target_type, is_pseudo=True)
        raise InvalidRequestError(f"unsupported target type for create object attrs: {target_type.value}")

    def list_entries(self, target_type: TargetType) -> List[Entry]:
        with self._lock:
            return sorted(self._by_id[target_type].values(), key=lambda e: e.name)

    def _lookup(self, kind: TargetType, by: TargetBy, value: str) -> Entry:
        with self._lock:
            if by == TargetBy.ID:
                entry = self._by_id[kind].get(value)
            else:
                entry = self._by_name[kind].get(value.lower())
        if entry is None:
            raise _not_found(kind, value)
        return entry


class InMemoryAclStore(AclStore):
    """ACEs per target, keyed by target id (or name for id-less targets)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._acls: Dict[Tuple[TargetType, str], Set[ACE]] = {}

    @staticmethod
    def _key(target: Entry) -> Tuple[TargetType, str]:
        return (target.kind, target.entry_id or target.name)

    def get_acl(self, target: Entry) -> ACL:
        with self._lock:
            return ACL(self._acls.get(self._key(target), ()))

    def add_grant(self, target: Entry, aces: Iterable[ACE]) -> None:
        if target.is_pseudo:
            raise InvalidRequestError("cannot grant on a pseudo target")
        with self._lock:
            acl = self._acls.setdefault(self._key(target), set())
            for ace in aces:
                # a grant replaces any grant of the same right to the same grantee
                acl.difference_update({
                    a for a in acl
                    if (a.grantee_type, a.grantee_id, a.right) == (ace.grantee_type, ace.grantee_id, ace.right)
                })
                acl.add(ace)

    def remove_grant(self, target: Entry, aces: Iterable[ACE]) -> List[ACE]:
        removed = []
        with self._lock:
            acl = self._acls.get(self._key(target), set())
            for ace in aces:
                if ace in acl:
                    acl.remove(ace)
                    removed.append(ace)
        return removed


class DirectGrantEvaluator(RuleEvaluator):
    """
    Reference evaluator over an ``AclStore``.

    A right is held when an allowing ACE for it (or for a combo containing
    it) exists for the grantee on the target, the target's domain or the
    global grant target, and no deny ACE covers it. Global admin accounts
    hold every right. Delegating requires the allowing ACE to carry
    CAN_DELEGATE.
    """

    def __init__(self, catalog: RightCatalog, directory: InMemoryDirectory, acl_store: AclStore):
        self.catalog = catalog
        self.directory = directory
        self.acl_store = acl_store
        self.logger = get_logger("rights.evaluator")

    def _grant_sources(self, target: Entry) -> List[Entry]:
        sources = [] if target.is_pseudo else [target]
        if target.kind.is_domained and target.domain_name:
            try:
                sources.append(self.directory.lookup_target(TargetType.DOMAIN, TargetBy.NAME, target.domain_name))
            except NotFoundError:
                # domain removed since the entry was created
                pass
        if target.kind != TargetType.GLOBAL:
            sources.append(self.directory.global_grant_entry)
        return sources

    def _aces_for(self, grantee: Entry, sources: Iterable[Entry]) -> List[Tuple[Entry, ACE]]:
        return [
            (source, ace)
            for source in sources
            for ace in self.acl_store.get_acl(source)
            if ace.grantee_id == grantee.entry_id
        ]

    def _covered(self, ace: ACE) -> Set[str]:
        try:
            return {r.name for r in self.catalog.get_right(ace.right).expand()}
        except NotFoundError:
            self.logger.warning("Grant refers to unknown right", right=ace.right)
            return set()

    def _decide(self, grantee: Entry, sources: List[Entry],
                for_grant: bool = False) -> Tuple[Dict[str, Tuple[Entry, ACE]], Dict[str, Tuple[Entry, ACE]]]:
        """Right name -> (source, ACE) that grants it, and the same for the ACE that denies it."""
        granted: Dict[str, Tuple[Entry, ACE]] = {}
        denied: Dict[str, Tuple[Entry, ACE]] = {}
        for source, ace in self._aces_for(grantee, sources):
            covered = self._covered(ace)
            if ace.is_deny:
                for name in covered:
                    denied.setdefault(name, (source, ace))
            elif ace.can_delegate or not for_grant:
                for name in covered:
                    granted.setdefault(name, (source, ace))
        return {name: hit for name, hit in granted.items() if name not in denied}, denied

    def _held(self, grantee: Entry, sources: List[Entry],
              for_grant: bool = False) -> Dict[str, Tuple[Entry, ACE]]:
        return self._decide(grantee, sources, for_grant)[0]

    def can_perform(self, actor: Entry, target: Entry, right: Right, for_grant: bool,
                    attrs: Optional[Dict[str, Any]] = None,
                    via: Optional[ViaGrant] = None) -> bool:
        if actor.is_admin_account:
            return True

        held, denied = self._decide(actor, self._grant_sources(target), for_grant)
        needed = list(right.expand())
        for r in needed:
            if r.name in denied:
                if via is not None:
                    self._set_via(via, denied[r.name], True)
                return False
        if not all(r.name in held for r in needed):
            return False

        if attrs and isinstance(right, AttrRight) and not right.all_attrs:
            if not set(attrs) <= set(right.attrs):
                return False

        if via is not None:
            self._set_via(via, held[needed[0].name], False)
        return True

    @staticmethod
    def _set_via(via: ViaGrant, hit: Tuple[Entry, ACE], is_negative: bool):
        source, ace = hit
        via.set(source.kind.value, source.label, ace.grantee_type, ace.grantee_name, ace.right, is_negative)

    def check_partially_denied(self, actor: Entry, target_type: TargetType,
                               target: Entry, right: Right) -> None:
        if actor.is_admin_account or not right.is_combo_right:
            return
        _, denied = self._decide(actor, self._grant_sources(target))
        partial = sorted(set(denied) & {r.name for r in right.expand()})
        if partial:
            raise PermissionDeniedError(
                f"cannot grant combo right {right.name}: {', '.join(partial)} denied to the granting account",
                {"check": "partial_denial", "denied_rights": partial}
            )

    def get_effective_rights(self, grantee: Entry, target: Entry,
                             expand_set_attrs: bool, expand_get_attrs: bool,
                             out: EffectiveRightsBuilder) -> None:
        if grantee.is_admin_account:
            rights = [
                r for r in self.catalog.get_all_admin_rights().values()
                if not r.is_combo_right and r.target_type == target.kind
            ]
            all_set = all_get = True
        else:
            held = self._held(grantee, self._grant_sources(target))
            rights = [self.catalog.get_right(name) for name in held]
            rights = [r for r in rights if r.target_type == target.kind]
            all_set = any(r.right_type == RightType.SET_ATTRS and r.all_attrs for r in rights)
            all_get = any(r.right_type == RightType.GET_ATTRS and r.all_attrs for r in rights)
        self._fill(out, target, rights, all_set, all_get, expand_set_attrs, expand_get_attrs)

    def _fill(self, out: EffectiveRightsBuilder, target: Entry, rights: List[Right],
              all_set: bool, all_get: bool, expand_set_attrs: bool, expand_get_attrs: bool):
        out.set_preset_rights(sorted(r.name for r in rights if r.is_preset_right))

        all_attrs = self.catalog.get_attrs(target.kind)
        for right_type, is_all, expand, set_all, set_attrs in (
            (RightType.SET_ATTRS, all_set, expand_set_attrs, out.set_can_set_all_attrs, out.set_can_set_attrs),
            (RightType.GET_ATTRS, all_get, expand_get_attrs, out.set_can_get_all_attrs, out.set_can_get_attrs),
        ):
            if is_all:
                set_all()
                names = all_attrs if expand else ()
            else:
                names = {a for r in rights if r.right_type == right_type for a in r.attrs}
            set_attrs({
                name: EffectiveAttr(name, frozenset(target.attrs.get(name, ())))
                for name in names
            })

    def get_all_effective_rights(self, grantee: Entry,
                                 expand_set_attrs: bool, expand_get_attrs: bool,
                                 out: AllEffectiveRights) -> None:
        for tt in TargetType:
            if tt == TargetType.GLOBAL:
                continue
            # rights on every entry of the type: global admin, or granted on the global target
            on_all = self._rights_on_all(grantee, tt, expand_set_attrs, expand_get_attrs)
            if grantee.is_admin_account:
                out.set_all(tt, on_all)
                continue

            if tt == TargetType.CONFIG:
                entries = [self.directory.lookup_target(TargetType.CONFIG, TargetBy.NAME, GLOBAL_CONFIG_NAME)]
            else:
                entries = self.directory.list_entries(tt)
            entry_rights: List[Tuple[Entry, EffectiveRights]] = []
            for entry in entries:
                builder = self._builder(tt, entry, grantee)
                self.get_effective_rights(grantee, entry, expand_set_attrs, expand_get_attrs, builder)
                entry_rights.append((entry, builder.build()))

            domain_rights: List[Tuple[Entry, EffectiveRights]] = []
            if tt.is_domained:
                for domain in self.directory.list_entries(TargetType.DOMAIN):
                    er = self._rights_from(grantee, [domain, self.directory.global_grant_entry], tt, domain,
                                           expand_set_attrs, expand_get_attrs)
                    domain_rights.append((domain, er))

            # An entry holding nothing cannot be listed, so a summary that grants
            # something is only valid when none of the entries under it hold nothing.
            all_baseline: Optional[EffectiveRights] = None
            if not _hides_empty(on_all, [er for _, er in entry_rights + domain_rights]):
                out.set_all(tt, on_all)
                all_baseline = on_all

            in_domain: Dict[str, EffectiveRights] = {}
            for domain, er in domain_rights:
                key = domain.name.lower()
                members = [e_er for e, e_er in entry_rights if (e.domain_name or "").lower() == key]
                if _hides_empty(er, members):
                    continue
                in_domain[key] = er
                if all_baseline is None or not er.has_same_rights(all_baseline):
                    out.add_domain_entry(tt, domain.name, er)

            for entry, er in entry_rights:
                # only entries whose rights differ from what their domain (or all entries) gives
                baseline = in_domain.get((entry.domain_name or "").lower(), all_baseline)
                if baseline is None or not er.has_same_rights(baseline):
                    out.add_entry(tt, entry.name, er)

    def _rights_on_all(self, grantee: Entry, target_type: TargetType,
                       expand_set_attrs: bool, expand_get_attrs: bool) -> EffectiveRights:
        pseudo = Entry(None, "", target_type)
        if grantee.is_admin_account:
            builder = self._builder(target_type, pseudo, grantee)
            self.get_effective_rights(grantee, pseudo, expand_set_attrs, expand_get_attrs, builder)
            return builder.build()
        return self._rights_from(grantee, [self.directory.global_grant_entry], target_type, pseudo,
                                 expand_set_attrs, expand_get_attrs)

    def _rights_from(self, grantee: Entry, sources: List[Entry], target_type: TargetType,
                     target: Entry, expand_set_attrs: bool, expand_get_attrs: bool) -> EffectiveRights:
        held = self._held(grantee, sources)
        rights = [self.catalog.get_right(name) for name in held]
        rights = [r for r in rights if r.target_type == target_type]
        all_set = any(r.right_type == RightType.SET_ATTRS and r.all_attrs for r in rights)
        all_get = any(r.right_type == RightType.GET_ATTRS and r.all_attrs for r in rights)
        builder = self._builder(target_type, target, grantee)
        self._fill(builder, Entry(None, target.name, target_type), rights,
                   all_set, all_get, expand_set_attrs, expand_get_attrs)
        return builder.build()

    @staticmethod
    def _builder(target_type: TargetType, target: Entry, grantee: Entry) -> EffectiveRightsBuilder:
        return EffectiveRightsBuilder(
            target_type.value, target.entry_id, target.label, grantee.entry_id or "", grantee.name
        )
