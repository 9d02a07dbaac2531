from __future__ import annotations

from enum import Enum

from app.core.errors import ValidationError
from app.models.entities import RoleEnum


class Capability(str, Enum):
    manage_family = "manageFamily"
    manage_members = "manageMembers"
    invite = "invite"
    manage_lists = "manageLists"
    view_lists = "viewLists"


ROLE_CAPABILITIES: dict[RoleEnum, frozenset[Capability]] = {
    RoleEnum.admin: frozenset(Capability),
    RoleEnum.editor: frozenset({Capability.manage_lists, Capability.view_lists}),
    RoleEnum.viewer: frozenset({Capability.view_lists}),
}


def can(role: RoleEnum, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES[role]


def parse_role(value: str | RoleEnum) -> RoleEnum:
    try:
        return RoleEnum(value)
    except ValueError:
        raise ValidationError("invalid role; must be admin, editor, or viewer") from None
