"""
User model with ULID primary keys.

Users are owned by the surrounding console; the permission engine only
reads them to find a user's role and for role-distribution analytics.
"""
from datetime import datetime
from sqlalchemy import String, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.core.database.base import Base, TimestampMixin, UTCDateTime, generate_ulid


class User(Base, TimestampMixin):
    """
    User model representing authenticated users.

    Every user holds exactly one role.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    role_key: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("roles.key"),
        nullable=False,
        index=True
    )

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    role: Mapped["Role"] = relationship(  # type: ignore  # noqa: F821
        "Role",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role_key})>"
