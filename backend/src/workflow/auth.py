"""
Authentication utilities for extracting the acting user from Cognito tokens.
"""
from dataclasses import dataclass
from typing import Optional

from .models import Role


@dataclass(frozen=True)
class Actor:
    """The user performing a workflow operation."""
    user_id: str
    role: str = Role.STAFF

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role == Role.MANAGER

    @property
    def is_privileged(self) -> bool:
        """Admins and managers may act on any level."""
        return self.role in (Role.ADMIN, Role.MANAGER)


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    try:
        return event['requestContext']['authorizer']['claims']['sub']
    except (KeyError, TypeError):
        return None


def get_user_groups(event: dict) -> list:
    """Extract user groups (admin, manager, staff) from Cognito claims."""
    try:
        groups = event['requestContext']['authorizer']['claims'].get('cognito:groups', '')
        if isinstance(groups, str):
            return groups.split(',') if groups else []
        return groups or []
    except (KeyError, TypeError):
        return []


def get_actor(event: dict) -> Optional[Actor]:
    """Build the Actor for a request, highest role wins."""
    user_id = get_user_sub(event)
    if not user_id:
        return None

    groups = get_user_groups(event)
    if Role.ADMIN in groups:
        role = Role.ADMIN
    elif Role.MANAGER in groups:
        role = Role.MANAGER
    else:
        role = Role.STAFF
    return Actor(user_id=user_id, role=role)
