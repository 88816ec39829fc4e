"""
Rights service for the access layer.
"""

from typing import Any, Dict, Optional

from fastapi import Header, Query
from pydantic import BaseModel, ConfigDict, Field

from shared.base_service import BaseService
from shared.errors import AccessControlException, AuthenticationError, InvalidRequestError, NotFoundError
from shared.logging import set_actor_context

from .backends.memory import DirectGrantEvaluator, InMemoryAclStore, InMemoryDirectory
from .rights.catalog import YamlRightCatalog
from .rights.codec import (
    ace_to_document, acl_to_document, all_effective_rights_to_document,
    create_object_attrs_to_document, effective_rights_to_document, right_to_document,
)
from .rights.command import RightCommand
from .rights.interfaces import Entry, ViaGrant
from .rights.models import GranteeBy, GranteeType, RightModifier, TargetBy


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EntrySelector(RequestModel):
    by: TargetBy = TargetBy.NAME
    value: str


class TargetSelector(RequestModel):
    type: str
    by: TargetBy = TargetBy.NAME
    value: str = ""


class GranteeSelector(RequestModel):
    type: str = GranteeType.USER.value
    by: GranteeBy = GranteeBy.NAME
    value: str


class RightSelector(RequestModel):
    name: str
    deny: bool = False
    can_delegate: bool = Field(False, alias="canDelegate")

    def modifier(self) -> Optional[RightModifier]:
        if self.deny and self.can_delegate:
            raise InvalidRequestError(f"right {self.name} cannot be both deny and canDelegate")
        if self.deny:
            return RightModifier.DENY
        if self.can_delegate:
            return RightModifier.CAN_DELEGATE
        return None


class CheckRightRequest(RequestModel):
    target: TargetSelector
    grantee: GranteeSelector
    right: str
    attrs: Optional[Dict[str, Any]] = None


class EffectiveRightsRequest(RequestModel):
    target: TargetSelector
    grantee: GranteeSelector
    expand_set_attrs: bool = Field(False, alias="expandSetAttrs")
    expand_get_attrs: bool = Field(False, alias="expandGetAttrs")


class AllEffectiveRightsRequest(RequestModel):
    grantee: GranteeSelector
    expand_set_attrs: bool = Field(False, alias="expandSetAttrs")
    expand_get_attrs: bool = Field(False, alias="expandGetAttrs")


class CreateObjectAttrsRequest(RequestModel):
    target_type: str = Field(alias="targetType")
    domain: Optional[EntrySelector] = None
    cos: Optional[EntrySelector] = None
    grantee: GranteeSelector


class GrantRequest(RequestModel):
    target: TargetSelector
    grantee: GranteeSelector
    right: RightSelector


def build_default_command(catalog_file: Optional[str] = None,
                          directory_file: Optional[str] = None) -> RightCommand:
    """
    Wire the protocol to the bundled catalog (or ``catalog_file``) and in-memory backends.

    Without ``directory_file`` the directory starts empty, so only catalog
    queries succeed until entries are added.
    """
    catalog = YamlRightCatalog.from_file(catalog_file)
    directory = InMemoryDirectory.from_file(directory_file) if directory_file else InMemoryDirectory()
    acl_store = InMemoryAclStore()
    evaluator = DirectGrantEvaluator(catalog, directory, acl_store)
    return RightCommand(catalog, directory, evaluator, acl_store)


class RightsService(BaseService):
    """Rights service implementation."""

    def __init__(self, command: Optional[RightCommand] = None, **config_overrides):
        super().__init__("rights", 8013, **config_overrides)

        self.command = command or build_default_command(self.config.catalog_file, self.config.directory_file)

        self._setup_rights_routes()

    def _resolve_actor(self, authed_account: Optional[str]) -> Optional[Entry]:
        """The authenticated account, or None for a trusted system call."""
        if not authed_account:
            if self.config.allow_system_caller:
                return None
            raise AuthenticationError("X-Authed-Account header is required")
        try:
            actor = self.command.directory.lookup_grantee(GranteeType.USER, GranteeBy.ID, authed_account)
        except NotFoundError:
            raise AuthenticationError(f"unknown authenticated account: {authed_account}") from None
        set_actor_context(actor.entry_id)
        return actor

    def _setup_rights_routes(self):
        """Set up rights-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "rights",
                "message": "Access Layer - Rights Service",
                "version": "1.0.0",
                "capabilities": ["effective_rights", "grant", "revoke"]
            }

        # registered before /rights/{name} so "grants" is not taken for a right name
        @self.app.get("/rights/grants")
        def get_grants(
            target_type: str = Query(..., alias="targetType"),
            target: str = Query("", description="Target id or name"),
            by: TargetBy = Query(TargetBy.NAME)
        ):
            """Grants attached to one target."""
            with self.metrics.time_query("grants"):
                acl = self.command.get_grants(target_type, by, target)
            return acl_to_document(acl).to_dict()

        @self.app.get("/rights")
        def get_all_rights(
            target_type: Optional[str] = Query(None, alias="targetType"),
            expand_all_attrs: bool = Query(False, alias="expandAllAttrs")
        ):
            """Admin rights, optionally only those grantable on a target type."""
            with self.metrics.time_query("rights"):
                rights = self.command.get_all_rights(target_type)
            return {
                "rights": [right_to_document(r, expand_all_attrs).to_dict() for r in rights]
            }

        @self.app.get("/rights/{name}")
        def get_right(name: str, expand_all_attrs: bool = Query(False, alias="expandAllAttrs")):
            """One right definition."""
            with self.metrics.time_query("right"):
                right = self.command.get_right(name)
            return right_to_document(right, expand_all_attrs).to_dict()

        @self.app.post("/rights/check")
        def check_right(request: CheckRightRequest):
            """Whether a grantee account holds a right on a target."""
            via = ViaGrant()
            with self.metrics.time_query("check"):
                allowed = self.command.check_right(
                    request.target.type, request.target.by, request.target.value,
                    request.grantee.by, request.grantee.value,
                    request.right, request.attrs, via
                )
            response: Dict[str, Any] = {"allow": allowed}
            if via.is_set:
                response["via"] = {
                    "targetType": via.target_type,
                    "target": via.target_name,
                    "granteeType": via.grantee_type,
                    "grantee": via.grantee_name,
                    "right": via.right,
                    "deny": via.is_negative,
                }
            return response

        @self.app.post("/rights/effective")
        def get_effective_rights(request: EffectiveRightsRequest):
            """Effective rights of a grantee account on one target."""
            with self.metrics.time_query("effective"):
                er = self.command.get_effective_rights(
                    request.target.type, request.target.by, request.target.value,
                    request.grantee.by, request.grantee.value,
                    request.expand_set_attrs, request.expand_get_attrs
                )
            return effective_rights_to_document(er).to_dict()

        @self.app.post("/rights/effective/all")
        def get_all_effective_rights(request: AllEffectiveRightsRequest):
            """Effective rights of a grantee on every target type."""
            with self.metrics.time_query("effective_all"):
                aer = self.command.get_all_effective_rights(
                    request.grantee.type, request.grantee.by, request.grantee.value,
                    request.expand_set_attrs, request.expand_get_attrs
                )
            return all_effective_rights_to_document(aer).to_dict()

        @self.app.post("/rights/create-object-attrs")
        def get_create_object_attrs(request: CreateObjectAttrsRequest):
            """Attributes a grantee could set on an object that does not exist yet."""
            with self.metrics.time_query("create_object_attrs"):
                er = self.command.get_create_object_attrs(
                    request.target_type,
                    request.domain.by if request.domain else None,
                    request.domain.value if request.domain else None,
                    request.cos.by if request.cos else None,
                    request.cos.value if request.cos else None,
                    request.grantee.by, request.grantee.value
                )
            return create_object_attrs_to_document(er).to_dict()

        @self.app.post("/rights/grant")
        def grant_right(
            request: GrantRequest,
            authed_account: Optional[str] = Header(None, alias="X-Authed-Account")
        ):
            """Grant a right on a target."""
            try:
                actor = self._resolve_actor(authed_account)
                ace = self.command.grant_right(
                    actor,
                    request.target.type, request.target.by, request.target.value,
                    request.grantee.type, request.grantee.by, request.grantee.value,
                    request.right.name, request.right.modifier()
                )
            except AccessControlException as e:
                self.metrics.record_mutation("grant", e.code)
                raise
            self.metrics.record_mutation("grant", "success")
            return ace_to_document(ace).to_dict()

        @self.app.post("/rights/revoke")
        def revoke_right(
            request: GrantRequest,
            authed_account: Optional[str] = Header(None, alias="X-Authed-Account")
        ):
            """Revoke a grant; grants of deleted grantees can be revoked by grantee id."""
            try:
                actor = self._resolve_actor(authed_account)
                revoked = self.command.revoke_right(
                    actor,
                    request.target.type, request.target.by, request.target.value,
                    request.grantee.type, request.grantee.by, request.grantee.value,
                    request.right.name, request.right.modifier()
                )
            except AccessControlException as e:
                self.metrics.record_mutation("revoke", e.code)
                raise
            self.metrics.record_mutation("revoke", "success")
            return {"revoked": [ace_to_document(ace).to_dict() for ace in revoked]}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check rights service dependencies."""
        rights = self.command.catalog.get_all_rights()
        return {"catalog": "ok" if rights else "empty"}


def create_app(command: Optional[RightCommand] = None, **config_overrides):
    """Create rights service application."""
    service = RightsService(command, **config_overrides)
    return service.app


if __name__ == "__main__":
    service = RightsService()
    service.run()
