"""
Shared route dependencies.
"""
from fastapi import Depends

from onyx_api.core.security import AuthenticatedUser, get_current_user


async def get_current_user_id(user: AuthenticatedUser = Depends(get_current_user)) -> str:
    """Issuer id of the caller; every query is scoped by it."""
    return user.issuer
