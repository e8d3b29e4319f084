from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from control_plane.modules.permissions.schemas import ServiceTreeNode

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Deterministic clock; tests move it explicitly."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def package_node(path: str, children: Optional[List[ServiceTreeNode]] = None) -> ServiceTreeNode:
    return ServiceTreeNode(full_code_path=path, node_kind="package", children=children or [])


def function_node(
    path: str, template_type: Optional[str], children: Optional[List[ServiceTreeNode]] = None
) -> ServiceTreeNode:
    return ServiceTreeNode(
        full_code_path=path, node_kind="function", template_type=template_type, children=children or []
    )


def app_node(path: str, children: Optional[List[ServiceTreeNode]] = None) -> ServiceTreeNode:
    return ServiceTreeNode(full_code_path=path, node_kind="app", children=children or [])


def all_false(*codes: str) -> dict:
    return {code: False for code in codes}


TABLE_ACTIONS = ("table:read", "table:write", "table:update", "table:delete", "table:admin")
FORM_ACTIONS = ("form:read", "form:write", "form:admin")
CHART_ACTIONS = ("chart:read", "chart:admin")
DIRECTORY_ACTIONS = (
    "directory:read", "directory:write", "directory:update", "directory:delete", "directory:admin"
)
