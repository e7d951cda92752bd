from fastapi import APIRouter, Depends
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from curfew.api.deps import get_current_user, get_db, require_roles
from curfew.models.activity_log import ActivityLog, ActivitySeverity
from curfew.models.child import Child
from curfew.models.device import Device
from curfew.models.user import User, UserRole
from curfew.schemas.activity import ActivityLogOut

router = APIRouter()


@router.get("/", response_model=list[ActivityLogOut])
def list_activity(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ActivityLogOut]:
    guardian_devices = (
        select(Device.id).join(Child, Child.id == Device.child_id).where(Child.guardian_id == current_user.id)
    )
    query = (
        select(ActivityLog)
        .where(or_(ActivityLog.user_id == current_user.id, ActivityLog.device_id.in_(guardian_devices)))
        .order_by(ActivityLog.created_at.desc())
        .limit(500)
    )
    return list(db.execute(query).scalars())


@router.get("/security", response_model=list[ActivityLogOut])
def list_security_events(
    current_user: User = Depends(require_roles(UserRole.admin)),
    db: Session = Depends(get_db),
) -> list[ActivityLogOut]:
    query = (
        select(ActivityLog)
        .where(ActivityLog.severity == ActivitySeverity.security)
        .order_by(ActivityLog.created_at.desc())
        .limit(500)
    )
    return list(db.execute(query).scalars())
