"""
Account listing and role management for teachers and admins.
"""
from fastapi import APIRouter, Depends, Form, HTTPException
from sqlalchemy.orm import Session

from app.auth.models import User
from app.core.deps import get_admin, get_main_admin, get_store
from app.db.kv_store import KeyValueStore
from app.db.session import get_db
from app.fluency.executor import TransitionExecutor
from app.fluency.levels import DEFAULT_LEVEL

router = APIRouter(tags=["api"])


@router.get("/users")
def list_users(
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_store),
    admin: User = Depends(get_admin),
):
    """
    Every account with its current level. Legacy accounts without a stored
    level are shown at A1 but not written; use /migrate-fluency-levels for that.
    """
    executor = TransitionExecutor(store)
    users = []
    for u in db.query(User).order_by(User.id.asc()).all():
        state = executor.read_state(u.id)
        users.append({
            "id": u.id,
            "email": u.email,
            "name": u.display_name,
            "role": u.role,
            "fluencyLevel": state.level.value if state else DEFAULT_LEVEL.value,
            "fluencyLevelUpdatedAt": state.level_updated_at if state else None,
        })
    return {"users": users}

STAFF_ROLES = ("student", "teacher", "coadmin")


@router.post("/users/{user_id}/role")
def set_role(
    user_id: int,
    role: str = Form(...),
    db: Session = Depends(get_db),
    main_admin: User = Depends(get_main_admin),
):
    """Main admin grants or revokes teacher / co-admin rights."""
    if role not in STAFF_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    old = user.role
    user.role = role
    db.commit()
    print(f"[AUTH] role change user={user_id} {old} -> {role} by main admin", flush=True)
    return {"id": user.id, "role": user.role}


@router.get("/health", include_in_schema=False)
def health():
    return {"status": "ok"}
