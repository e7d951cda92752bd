from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from curfew.api.deps import get_current_user, get_db, owned_child
from curfew.models.child import Child
from curfew.models.user import User
from curfew.schemas.child import ChildCreate, ChildOut
from curfew.services.audit import log_activity
from curfew.services.storage import delete_child_cascade

router = APIRouter()


@router.get("/", response_model=list[ChildOut])
def list_children(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ChildOut]:
    query = select(Child).where(Child.guardian_id == current_user.id).order_by(Child.name, Child.id)
    return list(db.execute(query).scalars())


@router.post("/", response_model=ChildOut, status_code=status.HTTP_201_CREATED)
def create_child(
    payload: ChildCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ChildOut:
    child = Child(guardian_id=current_user.id, name=payload.name, age=payload.age)
    db.add(child)
    db.flush()
    log_activity(db, action="child_created", user=current_user, details={"child_id": child.id})
    db.commit()
    db.refresh(child)
    return child


@router.delete("/{child_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_child(
    child_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Response:
    child = owned_child(db, child_id, current_user)
    removed_devices = delete_child_cascade(db, child)
    log_activity(
        db,
        action="child_deleted",
        user=current_user,
        details={"child_id": child_id, "removed_devices": removed_devices},
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
