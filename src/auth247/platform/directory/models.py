"""
Directory tables.

Tenants and their users. Metering only reads these: a tenant is billed
when it is active, and a user counts towards MAU only while active.
"""

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from auth247.platform.db import Base, TimestampMixin


class Tenant(Base, TimestampMixin):
    """An organization using the platform."""

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.name}, is_active={self.is_active})>"


class DirectoryUser(Base, TimestampMixin):
    """A user belonging to a tenant."""

    __tablename__ = "directory_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_directory_users_tenant_active", "tenant_id", "is_active"),
        Index("ix_directory_users_tenant_email", "tenant_id", "email", unique=True),
    )

    def __repr__(self) -> str:
        return f"<DirectoryUser(id={self.id}, tenant_id={self.tenant_id}, email={self.email})>"
