"""
Aggregation of effective rights across many targets.

Groups (target name, EffectiveRights) pairs into sets of targets that share
the same rights digest, so a grantee's rights can be presented as
"all accounts: A, B", "accounts in domain x.com: C" and
"acct-1, acct-2: D" instead of one line per entry.
"""

from types import MappingProxyType
from typing import FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from shared.errors import ConfigurationError, InvalidRequestError
from .models import EffectiveRights, TargetType, DOMAINED_TARGET_TYPES


class RightAggregation:
    """Target names on which a grantee holds the same rights."""

    def __init__(self, names: Iterable[str], rights: EffectiveRights):
        self._entries: Set[str] = set(names)
        self._rights = rights

    @property
    def entries(self) -> FrozenSet[str]:
        return frozenset(self._entries)

    @property
    def effective_rights(self) -> EffectiveRights:
        return self._rights

    @property
    def digest(self) -> str:
        return self._rights.digest

    def has_entry(self, name: str) -> bool:
        return name in self._entries

    def has_same_rights(self, er: EffectiveRights) -> bool:
        return self._rights.has_same_rights(er)

    def _add_entries(self, names: Iterable[str]):
        self._entries.update(names)

    def _remove_entry(self, name: str):
        self._entries.discard(name)

    def __repr__(self) -> str:
        return f"RightAggregation(entries={sorted(self._entries)}, digest={self.digest!r})"


def _add_entry(aggregations: List[RightAggregation], name: str, er: EffectiveRights):
    # Move the name out of whatever aggregation holds it now. The old
    # aggregation is kept even if this leaves it empty.
    for ra in aggregations:
        if ra.has_entry(name):
            ra._remove_entry(name)
            break

    for ra in aggregations:
        if ra.has_same_rights(er):
            ra._add_entries((name,))
            return

    aggregations.append(RightAggregation((name,), er))


def _add_aggregation(aggregations: List[RightAggregation], names: Iterable[str], er: EffectiveRights):
    names = set(names)
    for ra in aggregations:
        if ra.has_same_rights(er):
            ra._add_entries(names)
            return

    aggregations.append(RightAggregation(names, er))


class RightsByTargetType:
    """
    All effective rights a grantee holds on one target type.

    ``all`` holds the rights shared by every entry of the type. ``entries``
    partitions individually named entries by rights digest. For domained
    target types (account, calresource, dl) ``domains`` does the same for
    whole domains; for the others it is ``None``.
    """

    def __init__(self, target_type: TargetType, domained: bool = False):
        self.target_type = target_type
        self._all: Optional[EffectiveRights] = None
        self._entries: List[RightAggregation] = []
        self._domains: Optional[List[RightAggregation]] = [] if domained else None

    @property
    def is_domained(self) -> bool:
        return self._domains is not None

    @property
    def all(self) -> Optional[EffectiveRights]:
        return self._all

    @property
    def entries(self) -> Tuple[RightAggregation, ...]:
        return tuple(self._entries)

    @property
    def domains(self) -> Optional[Tuple[RightAggregation, ...]]:
        if self._domains is None:
            return None
        return tuple(self._domains)

    def aggregations_containing(self, name: str) -> Tuple[RightAggregation, ...]:
        return tuple(ra for ra in self._entries if ra.has_entry(name))

    def set_all(self, er: EffectiveRights):
        if er.has_no_right():
            return
        if self._all is not None:
            raise ConfigurationError(f"rights on all {self.target_type.value} entries are already set")
        self._all = er

    def add_entry(self, name: str, er: EffectiveRights):
        if er.has_no_right():
            return
        _add_entry(self._entries, name, er)

    def add_aggregation(self, names: Iterable[str], er: EffectiveRights):
        """
        Bulk insert of entries that share ``er``.

        Precondition: none of ``names`` has been inserted before. Unlike
        ``add_entry`` this does not take a name out of the aggregation it is
        already in, so a name that was added earlier with different rights
        ends up listed in two aggregations.
        """
        if er.has_no_right():
            return
        _add_aggregation(self._entries, names, er)

    def add_domain_entry(self, domain_name: str, er: EffectiveRights):
        if self._domains is None:
            raise InvalidRequestError(
                f"target type {self.target_type.value} cannot be aggregated by domain"
            )
        if er.has_no_right():
            return
        _add_entry(self._domains, domain_name, er)


class AllEffectiveRights:
    """Effective rights of one grantee on every target type."""

    def __init__(self, grantee_type: str = "", grantee_id: str = "", grantee_name: str = "",
                 domained_types: Iterable[TargetType] = DOMAINED_TARGET_TYPES):
        self.grantee_type = grantee_type
        self.grantee_id = grantee_id
        self.grantee_name = grantee_name
        domained = frozenset(domained_types)
        self._rights_by_target_type = {
            tt: RightsByTargetType(tt, domained=tt in domained) for tt in TargetType
        }

    @property
    def rights_by_target_type(self) -> Mapping[TargetType, RightsByTargetType]:
        return MappingProxyType(self._rights_by_target_type)

    def __getitem__(self, target_type: TargetType) -> RightsByTargetType:
        return self._rights_by_target_type[target_type]

    def set_all(self, target_type: TargetType, er: EffectiveRights):
        self._rights_by_target_type[target_type].set_all(er)

    def add_entry(self, target_type: TargetType, name: str, er: EffectiveRights):
        self._rights_by_target_type[target_type].add_entry(name, er)

    def add_aggregation(self, target_type: TargetType, names: Iterable[str], er: EffectiveRights):
        self._rights_by_target_type[target_type].add_aggregation(names, er)

    def add_domain_entry(self, target_type: TargetType, domain_name: str, er: EffectiveRights):
        self._rights_by_target_type[target_type].add_domain_entry(domain_name, er)
