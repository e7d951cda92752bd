import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Enum as SAEnum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from curfew.db.base import Base


class ConsentStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    denied = "denied"


class LockSource(str, Enum):
    none = "none"
    schedule = "schedule"
    manual = "manual"


class Device(Base):
    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    child_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    fingerprint: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    pending_fingerprint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    consent_status: Mapped[ConsentStatus] = mapped_column(
        SAEnum(ConsentStatus, name="consent_status"),
        nullable=False,
        default=ConsentStatus.pending,
    )
    consent_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Limited access granted from the handset; kept apart from guardian overrides.
    emergency_access_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Read cache only; written by storage.set_cached_lock_state.
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    restriction_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lock_source: Mapped[LockSource] = mapped_column(
        SAEnum(LockSource, name="lock_source"),
        nullable=False,
        default=LockSource.none,
    )
    state_computed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
