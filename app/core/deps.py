from typing import Optional

from fastapi import Request, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db.session import SessionLocal, get_db
from app.db.kv_store import KeyValueStore
from app.auth.models import User
from app.core.security import decode_access_token
from app.core.config import MAIN_ADMIN_USER_ID, PRIVILEGED_ROLES


def get_store() -> KeyValueStore:
    return KeyValueStore(SessionLocal)


def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    # Browser clients keep the token in a cookie
    return request.cookies.get("access_token")


def get_current_user(
    request: Request,
    db: Session = Depends(get_db)
) -> User:
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = decode_access_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        print(f"[AUTH] reject reason=user_not_found user={user_id} path={request.url.path}", flush=True)
        raise HTTPException(status_code=401, detail="User not found")

    return user


def get_main_admin(
    user: User = Depends(get_current_user)
) -> User:
    """Dependency to ensure the user is the main admin (by ID constant)."""
    if user.id != MAIN_ADMIN_USER_ID:
        raise HTTPException(status_code=403, detail="Only main admin can perform this action")

    return user


def is_privileged(user: User) -> bool:
    """Main admin (by ID constant) or a teacher/co-admin role."""
    return user.id == MAIN_ADMIN_USER_ID or user.role in PRIVILEGED_ROLES


def get_admin(
    user: User = Depends(get_current_user)
) -> User:
    """Dependency to ensure the caller may manage fluency levels."""
    if not is_privileged(user):
        print(f"[AUTH] forbidden user={user.id} role={user.role}", flush=True)
        raise HTTPException(status_code=403, detail="Admin access required")

    return user
