import uuid
from datetime import datetime
from enum import IntEnum

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from curfew.db.base import Base


class RestrictionLevel(IntEnum):
    none = 0
    app_level = 1
    wifi_only = 2
    full_block = 3


class Schedule(Base):
    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    guardian_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    # Numeric weekdays (0=Sunday); rows written by older clients may hold weekday names.
    days_of_week: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    network_restriction_level: Mapped[int] = mapped_column(
        Integer, nullable=False, default=int(RestrictionLevel.wifi_only)
    )
    restrict_wifi: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    restrict_mobile_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allow_emergency_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
