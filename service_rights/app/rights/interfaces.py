"""
Collaborator contracts the rights protocol depends on.

The directory, the rule evaluator and the ACL store are owned elsewhere;
the protocol only calls them. Any of them may block on I/O or fail on its
own, and their errors are surfaced to the caller as they are.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .aggregation import AllEffectiveRights
from .models import (
    ACE, ACL, EffectiveRightsBuilder, GranteeBy, GranteeType, Right, TargetBy, TargetType
)


@dataclass(frozen=True)
class Entry:
    """A directory entry as seen by the rights protocol."""
    entry_id: Optional[str]
    name: str
    kind: TargetType
    domain_name: Optional[str] = None
    cos_id: Optional[str] = None
    is_admin_account: bool = False
    is_delegated_admin_account: bool = False
    is_admin_group: bool = False
    is_pseudo: bool = False
    attrs: Mapping[str, Tuple[str, ...]] = field(default_factory=dict, compare=False, hash=False)

    @property
    def label(self) -> str:
        return self.name


@dataclass
class ViaGrant:
    """Filled in by the evaluator with the grant that decided a check."""
    target_type: Optional[str] = None
    target_name: Optional[str] = None
    grantee_type: Optional[str] = None
    grantee_name: Optional[str] = None
    right: Optional[str] = None
    is_negative: bool = False

    def set(self, target_type: str, target_name: str, grantee_type: str,
            grantee_name: str, right: str, is_negative: bool):
        self.target_type = target_type
        self.target_name = target_name
        self.grantee_type = grantee_type
        self.grantee_name = grantee_name
        self.right = right
        self.is_negative = is_negative

    @property
    def is_set(self) -> bool:
        return self.right is not None


class RightCatalog(ABC):
    """Immutable source of right definitions."""

    @abstractmethod
    def get_right(self, name: str) -> Right:
        """Return the right or raise NoSuchRightError."""

    @abstractmethod
    def get_all_rights(self) -> Dict[str, Right]:
        pass

    def get_all_admin_rights(self) -> Dict[str, Right]:
        return {
            name: right for name, right in self.get_all_rights().items()
            if not right.is_user_right
        }

    @abstractmethod
    def get_attrs(self, target_type: TargetType) -> Tuple[str, ...]:
        """All attribute names defined on entries of a target type."""


class Directory(ABC):
    """Identity lookup. Lookups raise NotFoundError subclasses."""

    @abstractmethod
    def lookup_target(self, target_type: TargetType, target_by: TargetBy, target: str) -> Entry:
        pass

    @abstractmethod
    def lookup_grantee(self, grantee_type: GranteeType, grantee_by: GranteeBy, grantee: str) -> Entry:
        pass

    @abstractmethod
    def create_pseudo_target(self, target_type: TargetType,
                             domain_by: Optional[TargetBy], domain: Optional[str],
                             cos_by: Optional[TargetBy], cos: Optional[str]) -> Entry:
        """Build an unsaved entry used to preview rights on object creation."""

    @abstractmethod
    def list_entries(self, target_type: TargetType) -> List[Entry]:
        pass


class RuleEvaluator(ABC):
    """Decides whether rights are actually held."""

    # False for evaluators that cannot check delegation; the protocol refuses them
    supports_delegation_checks = True

    @abstractmethod
    def can_perform(self, actor: Entry, target: Entry, right: Right, for_grant: bool,
                    attrs: Optional[Dict[str, Any]] = None,
                    via: Optional[ViaGrant] = None) -> bool:
        pass

    @abstractmethod
    def get_effective_rights(self, grantee: Entry, target: Entry,
                             expand_set_attrs: bool, expand_get_attrs: bool,
                             out: EffectiveRightsBuilder) -> None:
        pass

    @abstractmethod
    def get_all_effective_rights(self, grantee: Entry,
                                 expand_set_attrs: bool, expand_get_attrs: bool,
                                 out: AllEffectiveRights) -> None:
        pass

    @abstractmethod
    def check_partially_denied(self, actor: Entry, target_type: TargetType,
                               target: Entry, right: Right) -> None:
        """Raise PermissionDeniedError if the actor's own right is partly denied."""


class AclStore(ABC):
    """Persisted grants."""

    @abstractmethod
    def get_acl(self, target: Entry) -> ACL:
        pass

    @abstractmethod
    def add_grant(self, target: Entry, aces: Iterable[ACE]) -> None:
        pass

    @abstractmethod
    def remove_grant(self, target: Entry, aces: Iterable[ACE]) -> List[ACE]:
        """Remove matching ACEs and return the ones actually removed."""

