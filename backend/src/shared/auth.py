"""
Authentication utilities for extracting user info from Cognito tokens.
"""
from typing import Optional


def _claims(event: dict) -> dict:
    try:
        return event['requestContext']['authorizer']['claims'] or {}
    except (KeyError, TypeError):
        return {}


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    return _claims(event).get('sub')


def get_user_email(event: dict) -> Optional[str]:
    """Extract user email from Cognito claims."""
    return _claims(event).get('email')


def get_user_groups(event: dict) -> list:
    """Extract user groups (admin, reviewer) from Cognito claims."""
    groups = _claims(event).get('cognito:groups', '')
    if isinstance(groups, str):
        return [g.strip() for g in groups.split(',') if g.strip()]
    return list(groups or [])


def is_admin(event: dict) -> bool:
    """Check if user belongs to admin group."""
    return 'admin' in get_user_groups(event)


def is_reviewer(event: dict) -> bool:
    """Admins and reviewers may review microtask completions."""
    groups = get_user_groups(event)
    return 'admin' in groups or 'reviewer' in groups
