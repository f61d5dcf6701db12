"""Instance metadata models.

InstanceRecord is the persisted row; Instance is the validated view the
lifecycle manager hands out.
"""

import re
from datetime import UTC, datetime

from pydantic import BaseModel, Field as PydanticField, field_validator
from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel
from ulid import ULID

from flowhub.core.domain.instance import InstanceStatus

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def slugify(value: str) -> str:
    return _SLUG_RE.sub("-", value.lower()).strip("-")


class InstanceRecord(SQLModel, table=True):
    """Persisted instance metadata (one row per instance)."""

    __tablename__ = "instances"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    client_name: str = Field(max_length=100)
    subdomain: str = Field(max_length=100, index=True)
    port: int = Field(unique=True, index=True)
    status: InstanceStatus = Field(default=InstanceStatus.CREATED, sa_type=String)
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class Instance(BaseModel):
    """Instance view returned by the lifecycle manager."""

    model_config = {"from_attributes": True}

    id: str
    client_name: str
    subdomain: str
    port: int
    status: InstanceStatus
    created_at: datetime
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    def to_record(self) -> InstanceRecord:
        return InstanceRecord(
            id=self.id,
            client_name=self.client_name,
            subdomain=self.subdomain,
            port=self.port,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at or utc_now(),
        )


class CreateInstanceInput(BaseModel):
    """Input for LifecycleManager.create()."""

    client_name: str = PydanticField(..., min_length=1, max_length=100)
    username: str = PydanticField(..., min_length=1, max_length=64)
    password: str = PydanticField(..., min_length=8, max_length=128)
    subdomain: str | None = PydanticField(default=None, max_length=100)

    def resolved_subdomain(self, instance_id: str) -> str:
        if self.subdomain:
            return slugify(self.subdomain) or instance_id.lower()
        return slugify(self.client_name) or instance_id.lower()
