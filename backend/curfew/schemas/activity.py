from datetime import datetime

from pydantic import BaseModel

from curfew.models.activity_log import ActivitySeverity


class ActivityLogOut(BaseModel):
    id: str
    device_id: str | None
    user_id: str | None
    action: str
    severity: ActivitySeverity
    description: str | None
    details: dict
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
