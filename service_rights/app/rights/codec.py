"""
Transport documents for rights data.

Snapshots are rendered to pydantic models (serialised with camelCase
aliases) and parsed back. Right definitions are never rebuilt from a
document: the name is resolved against the catalog again.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.errors import InvalidRequestError
from .aggregation import AllEffectiveRights, RightAggregation, RightsByTargetType
from .interfaces import RightCatalog
from .models import (
    ACE, ACL, AttrRight, AttributeConstraint, ComboRight, EffectiveAttr, EffectiveRights,
    Right, RightModifier,
)


class Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ----------------------------------------------------------------------
# ACL
# ----------------------------------------------------------------------

class GrantDocument(Document):
    type: str = ""
    id: str = ""
    name: str = ""
    right: str = ""
    deny: bool = False
    can_delegate: bool = Field(False, alias="canDelegate")


class ACLDocument(Document):
    grants: List[GrantDocument] = Field(default_factory=list, alias="grant")


def ace_to_document(ace: ACE) -> GrantDocument:
    return GrantDocument(
        type=ace.grantee_type,
        id=ace.grantee_id,
        name=ace.grantee_name,
        right=ace.right,
        deny=ace.is_deny,
        can_delegate=ace.can_delegate,
    )


def ace_from_document(doc: GrantDocument) -> ACE:
    if doc.deny and doc.can_delegate:
        raise InvalidRequestError(
            f"grant of {doc.right} to {doc.id} cannot be both deny and canDelegate"
        )
    modifier = None
    if doc.deny:
        modifier = RightModifier.DENY
    elif doc.can_delegate:
        modifier = RightModifier.CAN_DELEGATE
    return ACE(doc.type, doc.id, doc.name, doc.right, modifier)


def acl_to_document(acl: ACL) -> ACLDocument:
    aces = sorted(acl, key=lambda a: (a.grantee_type, a.grantee_id, a.right))
    return ACLDocument(grants=[ace_to_document(ace) for ace in aces])


def acl_from_document(doc: ACLDocument) -> ACL:
    return ACL(ace_from_document(grant) for grant in doc.grants)


# ----------------------------------------------------------------------
# effective rights
# ----------------------------------------------------------------------

class ConstraintDocument(Document):
    min: Optional[str] = None
    max: Optional[str] = None
    values: Optional[List[str]] = None


class AttrDocument(Document):
    n: str
    constraint: Optional[ConstraintDocument] = None
    default: Optional[List[str]] = None


class AttrsDocument(Document):
    all: bool = False
    a: List[AttrDocument] = Field(default_factory=list)


class NamedDocument(Document):
    n: str


class GranteeRefDocument(Document):
    id: str = ""
    name: str = ""


class TargetRightsDocument(Document):
    type: str
    id: str = ""
    name: str = ""
    right: List[NamedDocument] = Field(default_factory=list)
    set_attrs: AttrsDocument = Field(default_factory=AttrsDocument, alias="setAttrs")
    get_attrs: AttrsDocument = Field(default_factory=AttrsDocument, alias="getAttrs")


class EffectiveRightsDocument(Document):
    grantee: GranteeRefDocument
    target: TargetRightsDocument


class CreateObjectAttrsDocument(Document):
    set_attrs: AttrsDocument = Field(default_factory=AttrsDocument, alias="setAttrs")


def _attrs_to_document(all_attrs: bool, attrs: Mapping[str, EffectiveAttr]) -> AttrsDocument:
    docs = []
    for ea in attrs.values():
        constraint = None
        if ea.constraint is not None:
            constraint = ConstraintDocument(
                min=ea.constraint.min,
                max=ea.constraint.max,
                values=sorted(ea.constraint.values) or None,
            )
        docs.append(AttrDocument(
            n=ea.attr_name,
            constraint=constraint,
            default=sorted(ea.default_values) or None,
        ))
    return AttrsDocument(all=all_attrs, a=docs)


def _attrs_from_document(doc: AttrsDocument) -> dict:
    attrs = {}
    for a in doc.a:
        constraint = None
        if a.constraint is not None:
            constraint = AttributeConstraint(
                min=a.constraint.min,
                max=a.constraint.max,
                values=frozenset(a.constraint.values or ()),
            )
        attrs[a.n] = EffectiveAttr(a.n, frozenset(a.default or ()), constraint)
    return attrs


def _target_rights_to_document(er: EffectiveRights) -> TargetRightsDocument:
    return TargetRightsDocument(
        type=er.target_type,
        id=er.target_id,
        name=er.target_name,
        right=[NamedDocument(n=r) for r in er.preset_rights],
        set_attrs=_attrs_to_document(er.can_set_all_attrs, er.can_set_attrs),
        get_attrs=_attrs_to_document(er.can_get_all_attrs, er.can_get_attrs),
    )


def effective_rights_to_document(er: EffectiveRights) -> EffectiveRightsDocument:
    return EffectiveRightsDocument(
        grantee=GranteeRefDocument(id=er.grantee_id, name=er.grantee_name),
        target=_target_rights_to_document(er),
    )


def effective_rights_from_document(doc: EffectiveRightsDocument) -> EffectiveRights:
    target = doc.target
    return EffectiveRights(
        target_type=target.type,
        target_id=target.id,
        target_name=target.name,
        grantee_id=doc.grantee.id,
        grantee_name=doc.grantee.name,
        preset_rights=tuple(r.n for r in target.right),
        can_set_all_attrs=target.set_attrs.all,
        can_set_attrs=_attrs_from_document(target.set_attrs),
        can_get_all_attrs=target.get_attrs.all,
        can_get_attrs=_attrs_from_document(target.get_attrs),
    )


def create_object_attrs_to_document(er: EffectiveRights) -> CreateObjectAttrsDocument:
    return CreateObjectAttrsDocument(set_attrs=_attrs_to_document(er.can_set_all_attrs, er.can_set_attrs))


def create_object_attrs_from_document(doc: CreateObjectAttrsDocument, target_type: str = "") -> EffectiveRights:
    return EffectiveRights(
        target_type=target_type,
        target_id="",
        target_name="",
        grantee_id="",
        grantee_name="",
        can_set_all_attrs=doc.set_attrs.all,
        can_set_attrs=_attrs_from_document(doc.set_attrs),
    )


# ----------------------------------------------------------------------
# all effective rights
# ----------------------------------------------------------------------

class AggregationDocument(Document):
    entry: List[str] = Field(default_factory=list)
    rights: TargetRightsDocument


class TargetTypeRightsDocument(Document):
    type: str
    all: Optional[TargetRightsDocument] = None
    in_domains: Optional[List[AggregationDocument]] = Field(None, alias="inDomains")
    entries: List[AggregationDocument] = Field(default_factory=list)


class AllEffectiveRightsDocument(Document):
    grantee: GranteeRefDocument
    target: List[TargetTypeRightsDocument] = Field(default_factory=list)


def _aggregations_to_document(aggregations: Iterable[RightAggregation]) -> List[AggregationDocument]:
    # aggregations emptied by later reassignment are not worth presenting
    return [
        AggregationDocument(entry=sorted(ra.entries), rights=_target_rights_to_document(ra.effective_rights))
        for ra in aggregations if ra.entries
    ]


def _rights_by_target_type_to_document(rbtt: RightsByTargetType) -> TargetTypeRightsDocument:
    return TargetTypeRightsDocument(
        type=rbtt.target_type.value,
        all=_target_rights_to_document(rbtt.all) if rbtt.all is not None else None,
        in_domains=_aggregations_to_document(rbtt.domains) if rbtt.is_domained else None,
        entries=_aggregations_to_document(rbtt.entries),
    )


def all_effective_rights_to_document(aer: AllEffectiveRights) -> AllEffectiveRightsDocument:
    return AllEffectiveRightsDocument(
        grantee=GranteeRefDocument(id=aer.grantee_id, name=aer.grantee_name),
        target=[
            _rights_by_target_type_to_document(rbtt)
            for rbtt in aer.rights_by_target_type.values()
        ],
    )


# ----------------------------------------------------------------------
# right definitions
# ----------------------------------------------------------------------

class RightAttrsDocument(Document):
    all: bool = False
    a: List[NamedDocument] = Field(default_factory=list)


class RightDocument(Document):
    name: str
    type: str
    target_type: str = Field("", alias="targetType")
    desc: str = ""
    attrs: Optional[RightAttrsDocument] = None
    rights: Optional[List[NamedDocument]] = None


def right_to_document(right: Right, expand_all_attrs: bool = False) -> RightDocument:
    doc = RightDocument(
        name=right.name,
        type=right.right_type.value,
        target_type=right.target_type_str,
        desc=right.description,
    )
    if isinstance(right, AttrRight):
        if right.all_attrs:
            names = right.all_attr_names if expand_all_attrs else ()
            doc.attrs = RightAttrsDocument(all=True, a=[NamedDocument(n=n) for n in names])
        else:
            doc.attrs = RightAttrsDocument(a=[NamedDocument(n=n) for n in right.attrs])
    elif isinstance(right, ComboRight):
        doc.rights = [NamedDocument(n=r.name) for r in right.rights]
    return doc


def right_from_document(doc: RightDocument, catalog: RightCatalog) -> Right:
    return catalog.get_right(doc.name)
