from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Form
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.kv_store import KeyValueStore
from app.auth.models import User
from app.core.deps import get_current_user, get_store
from app.core.security import hash_password, verify_password, create_access_token
from app.fluency.migration import BackfillMigrator

router = APIRouter(prefix="/auth", tags=["auth"])


# =========================
# SIGNUP
# =========================
@router.post("/signup")
def signup(
    email: str = Form(...),
    username: str = Form(...),
    password: str = Form(...),
    full_name: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_store),
):
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="Email already registered")

    if db.query(User).filter(User.username == username).first():
        raise HTTPException(status_code=400, detail="Username already taken")

    user = User(
        email=email,
        username=username,
        full_name=full_name,
        password_hash=hash_password(password),
        role="student",  # Staff roles are granted by the main admin
    )

    db.add(user)
    db.commit()
    db.refresh(user)

    state = BackfillMigrator(store).initial_assignment(user.id)
    print(f"[AUTH] signup user={user.id} level={state.level.value}", flush=True)

    return {
        "user": {"id": user.id, "email": user.email, "username": user.username, "role": user.role},
        "fluency": state.to_public(),
    }


# =========================
# LOGIN
# =========================
@router.post("/login")
def login(
    email_or_username: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
):
    # Try to find user by email first, then by username
    user = db.query(User).filter(User.email == email_or_username).first()
    if not user:
        user = db.query(User).filter(User.username == email_or_username).first()

    if not user or not verify_password(password, user.password_hash):
        print("[AUTH] Invalid credentials for:", email_or_username, flush=True)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_access_token(user.id)
    print("[AUTH] Login successful for:", user.username, flush=True)
    return {"access_token": token, "token_type": "bearer"}


# =========================
# PROFILE
# =========================
@router.get("/profile")
def profile(
    user: User = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
):
    """Own profile; accounts created before fluency levels existed get A1 here."""
    state = BackfillMigrator(store).ensure_initialized(user.id)
    return {
        "profile": {
            "id": user.id,
            "email": user.email,
            "username": user.username,
            "name": user.display_name,
            "role": user.role,
            "fluencyLevel": state.level.value,
            "fluencyLevelUpdatedAt": state.level_updated_at,
            "fluencyLevelUpdatedBy": state.level_updated_by,
        }
    }
