"""
Capability data models for the Rights Service.

Everything in here is a value-like snapshot: it never refers back to the
live directory or ACL store, so a result stays valid after the store has
changed underneath it.
"""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from shared.errors import InvalidRequestError


class TargetType(str, Enum):
    """Kinds of entries a right can be granted on."""
    ACCOUNT = "account"
    CALRESOURCE = "calresource"
    COS = "cos"
    DL = "dl"
    DOMAIN = "domain"
    SERVER = "server"
    CONFIG = "config"
    GLOBAL = "global"

    @property
    def is_domained(self) -> bool:
        """Entries of this type can be summarized per owning domain."""
        return self in DOMAINED_TARGET_TYPES

    @classmethod
    def from_string(cls, value: str) -> "TargetType":
        try:
            return cls(value)
        except ValueError:
            raise InvalidRequestError(
                f"invalid target type: {value}",
                {"valid_target_types": [tt.value for tt in cls]}
            ) from None


DOMAINED_TARGET_TYPES = frozenset({TargetType.ACCOUNT, TargetType.CALRESOURCE, TargetType.DL})


class GranteeType(str, Enum):
    """Kinds of grantees an ACE can name."""
    USER = "usr"
    GROUP = "grp"
    DOMAIN = "dom"
    AUTH_USER = "all"
    PUBLIC = "pub"

    @classmethod
    def from_code(cls, code: str) -> "GranteeType":
        try:
            return cls(code)
        except ValueError:
            raise InvalidRequestError(
                f"invalid grantee type: {code}",
                {"valid_grantee_types": [gt.value for gt in cls]}
            ) from None


class TargetBy(str, Enum):
    ID = "id"
    NAME = "name"


class GranteeBy(str, Enum):
    ID = "id"
    NAME = "name"


class RightModifier(str, Enum):
    """Annotation on a grant. A grant carries at most one."""
    DENY = "-"
    CAN_DELEGATE = "+"


class RightType(str, Enum):
    PRESET = "preset"
    GET_ATTRS = "getAttrs"
    SET_ATTRS = "setAttrs"
    COMBO = "combo"


@dataclass(frozen=True)
class Right:
    """A right definition as supplied by the right catalog."""
    name: str
    right_type: RightType
    target_type: Optional[TargetType]
    grantable_target_types: FrozenSet[TargetType]
    description: str = ""
    is_user_right: bool = False

    @property
    def is_preset_right(self) -> bool:
        return self.right_type == RightType.PRESET

    @property
    def is_attr_right(self) -> bool:
        return self.right_type in (RightType.GET_ATTRS, RightType.SET_ATTRS)

    @property
    def is_combo_right(self) -> bool:
        return self.right_type == RightType.COMBO

    @property
    def target_type_str(self) -> str:
        return self.target_type.value if self.target_type else ""

    def grantable_on_target_type(self, target_type: TargetType) -> bool:
        return target_type in self.grantable_target_types

    def report_grantable_target_types(self) -> str:
        return ", ".join(sorted(tt.value for tt in self.grantable_target_types))

    def expand(self) -> Iterator["Right"]:
        """Yield the non-combo rights this right stands for."""
        yield self


@dataclass(frozen=True)
class PresetRight(Right):
    pass


@dataclass(frozen=True)
class AttrRight(Right):
    """Right to get or set directory attributes."""
    attrs: Tuple[str, ...] = ()
    all_attrs: bool = False
    # every attribute of the target type; what "all" expands to
    all_attr_names: Tuple[str, ...] = ()

    def get_attrs(self) -> Tuple[str, ...]:
        return self.all_attr_names if self.all_attrs else self.attrs


@dataclass(frozen=True)
class ComboRight(Right):
    """Named bundle of other rights, in declaration order."""
    rights: Tuple[Right, ...] = ()

    def expand(self) -> Iterator[Right]:
        for right in self.rights:
            yield from right.expand()


@dataclass(frozen=True)
class ACE:
    """
    One grant as displayed to callers.

    Identity is grantee type, grantee id, right and modifier; the display
    name does not take part in equality, so an ACE rebuilt for an orphaned
    grantee still matches the stored one.
    """
    grantee_type: str
    grantee_id: str
    grantee_name: str = field(compare=False)
    right: str
    right_modifier: Optional[RightModifier] = None

    @property
    def is_deny(self) -> bool:
        return self.right_modifier == RightModifier.DENY

    @property
    def can_delegate(self) -> bool:
        return self.right_modifier == RightModifier.CAN_DELEGATE

    def describe(self) -> str:
        modifier = self.right_modifier.value if self.right_modifier else ""
        return (
            f"[grantee type={self.grantee_type}, grantee id={self.grantee_id}, "
            f"right={modifier}{self.right}]"
        )


class ACL:
    """Read-only set of ACEs attached to one target."""

    def __init__(self, aces: Iterable[ACE] = ()):
        self._aces: FrozenSet[ACE] = frozenset(aces)

    @property
    def aces(self) -> FrozenSet[ACE]:
        return self._aces

    def __iter__(self) -> Iterator[ACE]:
        return iter(self._aces)

    def __len__(self) -> int:
        return len(self._aces)

    def __contains__(self, ace: object) -> bool:
        return ace in self._aces

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ACL):
            return NotImplemented
        return self._aces == other._aces

    def __repr__(self) -> str:
        return f"ACL({sorted(ace.describe() for ace in self._aces)})"


@dataclass(frozen=True)
class AttributeConstraint:
    min: Optional[str] = None
    max: Optional[str] = None
    values: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class EffectiveAttr:
    """What a grantee may set or see for one attribute."""
    attr_name: str
    default_values: FrozenSet[str] = frozenset()
    constraint: Optional[AttributeConstraint] = None


def _sorted_attrs(attrs: Optional[Mapping[str, EffectiveAttr]]) -> Mapping[str, EffectiveAttr]:
    return MappingProxyType({name: attrs[name] for name in sorted(attrs or {})})


def _names_hash(names: Iterable[str]) -> str:
    return hashlib.md5(json.dumps(sorted(names)).encode()).hexdigest()


@dataclass(frozen=True)
class EffectiveRights:
    """
    Everything one grantee can do on one target.

    Equivalence between snapshots is decided by ``digest``: it covers the
    preset right names and, per direction, either "all" or the attribute
    names. Target, grantee, attribute defaults and constraints are not part
    of it.
    """
    target_type: str
    target_id: str
    target_name: str
    grantee_id: str
    grantee_name: str
    preset_rights: Tuple[str, ...] = ()
    can_set_all_attrs: bool = False
    can_set_attrs: Mapping[str, EffectiveAttr] = field(default_factory=dict)
    can_get_all_attrs: bool = False
    can_get_attrs: Mapping[str, EffectiveAttr] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "target_id", self.target_id or "")
        object.__setattr__(self, "preset_rights", tuple(sorted(self.preset_rights)))
        object.__setattr__(self, "can_set_attrs", _sorted_attrs(self.can_set_attrs))
        object.__setattr__(self, "can_get_attrs", _sorted_attrs(self.can_get_attrs))

    def has_no_right(self) -> bool:
        return (
            not self.preset_rights
            and (not self.can_set_all_attrs and not self.can_set_attrs)
            and (not self.can_get_all_attrs and not self.can_get_attrs)
        )

    @cached_property
    def digest(self) -> str:
        set_attrs = "all" if self.can_set_all_attrs else _names_hash(self.can_set_attrs)
        get_attrs = "all" if self.can_get_all_attrs else _names_hash(self.can_get_attrs)
        return (
            f"preset:{_names_hash(self.preset_rights)};"
            f"setAttrs:{set_attrs};"
            f"getAttrs:{get_attrs};"
        )

    def has_same_rights(self, other: "EffectiveRights") -> bool:
        return self.digest == other.digest


class EffectiveRightsBuilder:
    """Mutable staging area the rule evaluator fills before the snapshot is frozen."""

    def __init__(self, target_type: str, target_id: Optional[str], target_name: str,
                 grantee_id: str, grantee_name: str):
        self.target_type = target_type
        self.target_id = target_id or ""
        self.target_name = target_name
        self.grantee_id = grantee_id
        self.grantee_name = grantee_name
        self.preset_rights: List[str] = []
        self.can_set_all_attrs = False
        self.can_set_attrs: Dict[str, EffectiveAttr] = {}
        self.can_get_all_attrs = False
        self.can_get_attrs: Dict[str, EffectiveAttr] = {}

    def set_preset_rights(self, rights: Iterable[str]) -> "EffectiveRightsBuilder":
        self.preset_rights = list(rights)
        return self

    def set_can_set_all_attrs(self) -> "EffectiveRightsBuilder":
        self.can_set_all_attrs = True
        return self

    def set_can_set_attrs(self, attrs: Mapping[str, EffectiveAttr]) -> "EffectiveRightsBuilder":
        self.can_set_attrs = dict(attrs)
        return self

    def set_can_get_all_attrs(self) -> "EffectiveRightsBuilder":
        self.can_get_all_attrs = True
        return self

    def set_can_get_attrs(self, attrs: Mapping[str, EffectiveAttr]) -> "EffectiveRightsBuilder":
        self.can_get_attrs = dict(attrs)
        return self

    def build(self) -> EffectiveRights:
        return EffectiveRights(
            target_type=self.target_type,
            target_id=self.target_id,
            target_name=self.target_name,
            grantee_id=self.grantee_id,
            grantee_name=self.grantee_name,
            preset_rights=tuple(self.preset_rights),
            can_set_all_attrs=self.can_set_all_attrs,
            can_set_attrs=self.can_set_attrs,
            can_get_all_attrs=self.can_get_all_attrs,
            can_get_attrs=self.can_get_attrs,
        )
