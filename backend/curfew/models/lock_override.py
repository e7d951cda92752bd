import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from curfew.db.base import Base


class OverrideMode(str, Enum):
    lock = "lock"
    unlock = "unlock"


class DeviceLockOverride(Base):
    """Manually forced lock state, kept apart from the schedule-derived state."""

    __tablename__ = "device_lock_overrides"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    device_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    mode: Mapped[OverrideMode] = mapped_column(SAEnum(OverrideMode, name="override_mode"), nullable=False)
    restriction_level: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
