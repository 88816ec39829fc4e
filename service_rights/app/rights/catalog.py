"""
YAML-backed right catalog.
"""

from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Optional, Set, Tuple, Union

import yaml

from shared.errors import ConfigurationError, InvalidRequestError, NoSuchRightError
from shared.logging import get_logger
from .interfaces import RightCatalog
from .models import AttrRight, ComboRight, PresetRight, Right, RightType, TargetType

DEFAULT_CATALOG_FILE = Path(__file__).parent / "rights.yaml"

# A right executable on the key type can be granted on any of these
GRANTABLE_ON: Dict[TargetType, FrozenSet[TargetType]] = {
    TargetType.ACCOUNT: frozenset({TargetType.ACCOUNT, TargetType.DL, TargetType.DOMAIN, TargetType.GLOBAL}),
    TargetType.CALRESOURCE: frozenset({TargetType.CALRESOURCE, TargetType.DL, TargetType.DOMAIN, TargetType.GLOBAL}),
    TargetType.DL: frozenset({TargetType.DL, TargetType.DOMAIN, TargetType.GLOBAL}),
    TargetType.DOMAIN: frozenset({TargetType.DOMAIN, TargetType.GLOBAL}),
    TargetType.COS: frozenset({TargetType.COS, TargetType.GLOBAL}),
    TargetType.SERVER: frozenset({TargetType.SERVER, TargetType.GLOBAL}),
    TargetType.CONFIG: frozenset({TargetType.CONFIG, TargetType.GLOBAL}),
    TargetType.GLOBAL: frozenset({TargetType.GLOBAL}),
}


def _target_type(value: str, where: str) -> TargetType:
    try:
        return TargetType.from_string(value)
    except InvalidRequestError as e:
        raise ConfigurationError(f"{where}: {e.message}", e.details) from None


class YamlRightCatalog(RightCatalog):
    """
    Right catalog loaded from a YAML document.

    The document has two sections::

        attributes:
          account: [displayName, zimbraMailQuota]
        rights:
          renameAccount:
            type: preset
            targetType: account
            desc: rename an account
          modifyAccount:
            type: setAttrs
            targetType: account
            attrs: all
          accountAdmin:
            type: combo
            rights: [renameAccount, modifyAccount]

    ``grantableTargetTypes`` overrides the derived grantable target types and
    ``userRight: true`` marks a self-service right.
    """

    def __init__(self, data: Mapping[str, Any]):
        self.logger = get_logger("rights.catalog")
        self._attrs: Dict[TargetType, Tuple[str, ...]] = {
            _target_type(tt, "attributes"): tuple(sorted(names or ()))
            for tt, names in (data.get("attributes") or {}).items()
        }
        self._definitions: Dict[str, Mapping[str, Any]] = dict(data.get("rights") or {})
        self._rights: Dict[str, Right] = {}
        for name in self._definitions:
            self._resolve(name, set())
        self.logger.info("Right catalog loaded", rights=len(self._rights))

    @classmethod
    def from_file(cls, path: Optional[Union[str, Path]] = None) -> "YamlRightCatalog":
        path = Path(path) if path else DEFAULT_CATALOG_FILE
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"cannot load right catalog {path}: {e}") from e
        return cls(data)

    def get_right(self, name: str) -> Right:
        right = self._rights.get(name)
        if right is None:
            raise NoSuchRightError(name)
        return right

    def get_all_rights(self) -> Dict[str, Right]:
        return dict(self._rights)

    def get_attrs(self, target_type: TargetType) -> Tuple[str, ...]:
        return self._attrs.get(target_type, ())

    def _resolve(self, name: str, resolving: Set[str]) -> Right:
        if name in self._rights:
            return self._rights[name]
        if name in resolving:
            raise ConfigurationError(f"combo right {name} includes itself")
        definition = self._definitions.get(name)
        if definition is None:
            raise ConfigurationError(f"right {name} is referenced but not defined")

        resolving.add(name)
        try:
            right = self._build(name, definition, resolving)
        finally:
            resolving.discard(name)
        self._rights[name] = right
        return right

    def _build(self, name: str, definition: Mapping[str, Any], resolving: Set[str]) -> Right:
        try:
            right_type = RightType(definition.get("type", "preset"))
        except ValueError:
            raise ConfigurationError(f"right {name} has invalid type {definition.get('type')}") from None

        common = {
            "name": name,
            "right_type": right_type,
            "description": definition.get("desc", ""),
            "is_user_right": bool(definition.get("userRight", False)),
        }

        if right_type == RightType.COMBO:
            rights = tuple(self._resolve(r, resolving) for r in definition.get("rights") or ())
            if not rights:
                raise ConfigurationError(f"combo right {name} has no rights")
            grantable: FrozenSet[TargetType] = frozenset().union(
                *(r.grantable_target_types for r in rights)
            )
            return ComboRight(
                target_type=None,
                grantable_target_types=self._grantable(definition, grantable),
                rights=rights,
                **common
            )

        target_type = _target_type(definition.get("targetType", ""), f"right {name}")
        grantable = self._grantable(definition, GRANTABLE_ON[target_type])

        if right_type == RightType.PRESET:
            return PresetRight(target_type=target_type, grantable_target_types=grantable, **common)

        attrs = definition.get("attrs", ())
        all_attrs = attrs == "all"
        if not all_attrs:
            unknown = set(attrs) - set(self.get_attrs(target_type))
            if unknown:
                raise ConfigurationError(
                    f"right {name} refers to unknown {target_type.value} attributes: {sorted(unknown)}"
                )
        return AttrRight(
            target_type=target_type,
            grantable_target_types=grantable,
            attrs=() if all_attrs else tuple(sorted(attrs)),
            all_attrs=all_attrs,
            all_attr_names=self.get_attrs(target_type),
            **common
        )

    @staticmethod
    def _grantable(definition: Mapping[str, Any], derived: FrozenSet[TargetType]) -> FrozenSet[TargetType]:
        explicit = definition.get("grantableTargetTypes")
        if explicit is None:
            return derived
        return frozenset(_target_type(tt, "grantableTargetTypes") for tt in explicit)
