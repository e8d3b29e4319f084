"""
Action catalog: permission points of the form "<resource_type>:<action_type>".

The static matrix comes from config.permissions_config; ActionService persists
it into the actions table on startup.
"""

from typing import List, Optional, Set, Tuple
import logging

from control_plane.config.permissions_config import RESOURCE_TYPES, ACTION_TYPES, PERMISSION_MATRIX
from control_plane.core.errors import InvalidActionCode, InvalidResourceType
from control_plane.modules.permissions.repository import PermissionStore
from control_plane.modules.permissions.role_cache import RoleCache
from control_plane.modules.permissions.schemas import NodeKind, ResourceType, TemplateType

logger = logging.getLogger(__name__)

CODE_SEPARATOR = ":"


def build_code(resource_type: str, action_type: str) -> str:
    if resource_type not in RESOURCE_TYPES:
        raise InvalidResourceType(f"Unknown resource type: {resource_type!r}")
    if action_type not in ACTION_TYPES:
        raise InvalidActionCode(f"Unknown action type: {action_type!r}")
    return f"{resource_type}{CODE_SEPARATOR}{action_type}"


def parse_code(code: str) -> Tuple[str, str]:
    """Split an action code into (resource_type, action_type)."""
    parts = (code or "").split(CODE_SEPARATOR)
    if len(parts) != 2:
        raise InvalidActionCode(f"Malformed action code: {code!r}")
    resource_type, action_type = parts
    if resource_type not in RESOURCE_TYPES or action_type not in ACTION_TYPES:
        raise InvalidActionCode(f"Unknown action code: {code!r}")
    return resource_type, action_type


def is_valid_code(code: str) -> bool:
    """True when the code is well-formed and valid for its resource type."""
    try:
        resource_type, action_type = parse_code(code)
    except InvalidActionCode:
        return False
    return action_type in RESOURCE_TYPES[resource_type]["actions"]


def actions_for(resource_type: str) -> Set[str]:
    config = RESOURCE_TYPES.get(resource_type)
    if config is None:
        raise InvalidResourceType(f"Unknown resource type: {resource_type!r}")
    return {f"{resource_type}{CODE_SEPARATOR}{action}" for action in config["actions"]}


def resource_type_of(node_kind: str, template_type: Optional[str] = None) -> Optional[str]:
    """
    Resource type of a service-tree node, or None when it cannot be determined.
    A function node needs an explicit table/form/chart template.
    """
    if node_kind == NodeKind.PACKAGE.value:
        return ResourceType.DIRECTORY.value
    if node_kind == NodeKind.APP.value:
        return ResourceType.APP.value
    if node_kind == NodeKind.FUNCTION.value:
        if template_type in {t.value for t in TemplateType}:
            return template_type
        return None
    return None


def actions_required_for(node_kind: str, template_type: Optional[str] = None) -> Set[str]:
    resource_type = resource_type_of(node_kind, template_type)
    if resource_type is None:
        return set()
    return actions_for(resource_type)


class ActionService:
    def __init__(self, store: PermissionStore, cache: RoleCache):
        self.store = store
        self.cache = cache

    def init_default_actions(self) -> int:
        """Insert every canonical action code missing from the store. Returns the number created."""
        created = 0
        for action in PERMISSION_MATRIX["actions"]:
            if self.store.get_action_by_code(action["code"]) is not None:
                continue
            self.store.create_action({
                "code": action["code"],
                "resource_type": action["resource_type"],
                "action_type": action["action_type"],
                "name": action["name"],
                "description": action["description"],
                "is_system": True,
                "created_by": "system",
            })
            created += 1
        if created:
            logger.info(f"Seeded {created} action points")
        return created

    def list_actions(self, resource_type: Optional[str] = None):
        if resource_type is not None and resource_type not in RESOURCE_TYPES:
            raise InvalidResourceType(f"Unknown resource type: {resource_type!r}")
        return self.store.list_actions(resource_type)

    def get_default_permissions(self, resource_type: str) -> List[str]:
        """Permission codes of the default role of a resource type"""
        if resource_type not in RESOURCE_TYPES:
            raise InvalidResourceType(f"Unknown resource type: {resource_type!r}")
        role = self.cache.get_default_role(resource_type)
        if role is None:
            return []
        permissions = self.cache.get_role_permissions(role.id) or {}
        return sorted(code for codes in permissions.values() for code in codes)
