"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends

from app.features.users.models import User
from app.features.users.schemas import CurrentUserResponse
from app.features.users.dependencies import get_current_user
from app.features.permissions.dependencies import get_resolver
from app.features.permissions.resolver import EffectivePermissionResolver


router = APIRouter(tags=["users"])


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)],
    resolver: Annotated[EffectivePermissionResolver, Depends(get_resolver)]
):
    """Get current authenticated user's profile and effective permissions."""
    effective = await resolver.resolve(user.id)
    return CurrentUserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role_key=user.role_key,
        is_active=user.is_active,
        last_login_at=user.last_login_at,
        role_name=user.role.name,
        hierarchy=user.role.hierarchy_level,
        effective_permissions=sorted(effective),
    )
