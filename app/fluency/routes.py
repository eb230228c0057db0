from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.auth.models import User
from app.core.deps import get_admin, get_current_user, get_store, is_privileged
from app.db.kv_store import KeyValueStore
from app.db.session import get_db
from app.fluency.audit import AuditLog
from app.fluency.certificates import CertificateIssuer
from app.fluency.errors import FluencyError, InvalidTransition
from app.fluency.executor import TransitionExecutor
from app.fluency.levels import all_levels
from app.fluency.migration import BackfillMigrator

router = APIRouter(tags=["fluency"])


class TransitionRequest(BaseModel):
    # Any value is accepted here and rejected as UnknownLevel by the validator
    newLevel: Any = None
    reason: Optional[str] = None


def _http_error(e: FluencyError) -> HTTPException:
    if isinstance(e, InvalidTransition):
        return HTTPException(status_code=400, detail={"error": e.message, "reason": e.reason})
    return HTTPException(status_code=e.status_code, detail=e.message)


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# ======================================================
# LEVELS
# ======================================================
@router.get("/fluency/levels")
def list_levels():
    return {"levels": all_levels()}


# ======================================================
# HISTORY
# ======================================================
@router.get("/fluency/history/{user_id}")
def get_history(
    user_id: int,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_store),
    user: User = Depends(get_current_user),
):
    """Most recent change first."""
    _get_user_or_404(db, user_id)
    try:
        # Finish any half-written transition so its entry shows up
        TransitionExecutor(store).read_state(user_id)
        history = AuditLog(store).list_for(user_id)
    except FluencyError as e:
        raise _http_error(e)
    return {"userId": user_id, "history": [h.to_dict() for h in history]}


# ======================================================
# STATE
# ======================================================
@router.get("/fluency/{user_id}")
def get_fluency(
    user_id: int,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_store),
    user: User = Depends(get_current_user),
):
    _get_user_or_404(db, user_id)
    try:
        state = BackfillMigrator(store).ensure_initialized(user_id)
    except FluencyError as e:
        raise _http_error(e)
    return state.to_public()


@router.patch("/fluency/{user_id}")
def update_fluency(
    user_id: int,
    body: Optional[TransitionRequest] = None,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_store),
    user: User = Depends(get_current_user),
):
    body = body or TransitionRequest()
    privileged = is_privileged(user)
    executor = TransitionExecutor(store)
    # Unprivileged callers are turned away by the executor before any lookup
    target = db.query(User).filter(User.id == user_id).first() if privileged else None
    try:
        if target is not None:
            BackfillMigrator(store, executor=executor).ensure_initialized(user_id)
        result = executor.transition(
            actor_id=user.id,
            actor_is_privileged=privileged,
            target_user_id=user_id,
            requested_level=body.newLevel,
            user_name=target.display_name if target is not None else None,
            reason=body.reason,
            actor_name=user.display_name,
        )
    except FluencyError as e:
        raise _http_error(e)
    return result.to_dict()


# ======================================================
# CERTIFICATES
# ======================================================
@router.get("/certificates/{user_id}")
def list_certificates(
    user_id: int,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_store),
    user: User = Depends(get_current_user),
):
    """Oldest first."""
    _get_user_or_404(db, user_id)
    try:
        certificates = CertificateIssuer(store).list_for(user_id)
    except FluencyError as e:
        raise _http_error(e)
    return {"userId": user_id, "certificates": [c.to_dict() for c in certificates]}


@router.get("/certificates/{user_id}/{certificate_id}")
def get_certificate(
    user_id: int,
    certificate_id: str,
    store: KeyValueStore = Depends(get_store),
    user: User = Depends(get_current_user),
):
    try:
        certificate = CertificateIssuer(store).get(user_id, certificate_id)
    except FluencyError as e:
        raise _http_error(e)
    if certificate is None:
        raise HTTPException(status_code=404, detail="Certificate not found")
    return {"certificate": certificate.to_dict()}


# ======================================================
# BULK BACKFILL
# ======================================================
@router.post("/migrate-fluency-levels")
def migrate_fluency_levels(
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_store),
    admin: User = Depends(get_admin),
):
    user_ids = [row[0] for row in db.query(User.id).order_by(User.id.asc()).all()]
    try:
        counts = BackfillMigrator(store).bulk_migrate(admin.id, user_ids, actor_name=admin.display_name)
    except FluencyError as e:
        raise _http_error(e)
    return {
        "success": True,
        **counts,
        "message": f"Migrated {counts['migratedCount']} users, skipped "
                   f"{counts['skippedCount']} users with existing fluency levels",
    }
