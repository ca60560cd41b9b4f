"""
Pydantic schemas for user-related responses.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: str
    email: str
    name: str
    role_key: str
    is_active: bool
    last_login_at: datetime | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CurrentUserResponse(UserResponse):
    """The caller's profile with their resolved permissions."""
    role_name: str
    hierarchy: int
    effective_permissions: list[str] = []
