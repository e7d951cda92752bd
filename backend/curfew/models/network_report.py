import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from curfew.db.base import Base


class NetworkControlReport(Base):
    __tablename__ = "network_control_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    device_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    restriction_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wifi_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    mobile_data_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enforcement_success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    capabilities: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
