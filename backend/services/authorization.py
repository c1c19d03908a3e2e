# backend/services/authorization.py
"""
Role-based access control for the admin views.

Every permission decision goes through is_allowed(role, action); nothing else
in the code base compares role strings.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from errors import NotAuthorized


class Role(str, Enum):
    INDIVIDUAL_USER = "individual_user"
    CONTENT_EDITOR = "content_editor"
    COMMERCE_MANAGER = "commerce_manager"
    SUPER_ADMIN = "super_admin"


class Action(str, Enum):
    VIEW_OPTIMIZATIONS = "view_optimizations"
    MANAGE_BLOG = "manage_blog"
    MANAGE_USERS = "manage_users"


PERMISSIONS: Dict[Role, FrozenSet[Action]] = {
    Role.INDIVIDUAL_USER: frozenset(),
    Role.CONTENT_EDITOR: frozenset({Action.MANAGE_BLOG}),
    Role.COMMERCE_MANAGER: frozenset({Action.VIEW_OPTIMIZATIONS}),
    Role.SUPER_ADMIN: frozenset(Action),
}

DEFAULT_TABS: Dict[Role, str] = {
    Role.CONTENT_EDITOR: "blogs",
    Role.COMMERCE_MANAGER: "optimizations",
    Role.SUPER_ADMIN: "optimizations",
}


def parse_role(value: Union[str, Role, None]) -> Role:
    """Unknown or missing roles fall back to the least privileged one."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return Role.INDIVIDUAL_USER


def is_allowed(role: Union[str, Role, None], action: Action) -> bool:
    return action in PERMISSIONS[parse_role(role)]


def require(role: Union[str, Role, None], action: Action) -> None:
    if not is_allowed(role, action):
        raise NotAuthorized(f"Role '{parse_role(role).value}' may not {action.value.replace('_', ' ')}.")


def default_admin_tab(role: Union[str, Role, None]) -> Optional[str]:
    """Tab the admin panel opens on, or None when the role has no admin access."""
    return DEFAULT_TABS.get(parse_role(role))
