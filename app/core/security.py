from datetime import datetime, timedelta, timezone
from typing import Optional
import hashlib
import hmac
import os
from jose import jwt, JWTError

# ======================
# PASSWORD HASHING (PBKDF2)
# ======================

_PBKDF2_ROUNDS = 100_000


def hash_password(password: str) -> str:
    salt = os.urandom(16)
    pwd_hash = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, _PBKDF2_ROUNDS)
    return salt.hex() + ":" + pwd_hash.hex()


def verify_password(password: str, stored: str) -> bool:
    try:
        salt_hex, hash_hex = stored.split(":")
    except ValueError:
        return False
    pwd_hash = hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt_hex), _PBKDF2_ROUNDS)
    return hmac.compare_digest(pwd_hash, bytes.fromhex(hash_hex))


# ======================
# JWT (sub = user id)
# ======================

SECRET_KEY = os.getenv("SECRET_KEY", os.getenv("JWT_SECRET_KEY", ""))
if not SECRET_KEY:
    # In production, require a secret; for local dev, use a default (UNSAFE for prod)
    if os.getenv("ENVIRONMENT", "").lower() == "production":
        raise RuntimeError("SECRET_KEY or JWT_SECRET_KEY env var is required in production")
    SECRET_KEY = "dev-secret-key-CHANGE-IN-PRODUCTION-12345678901234567890"
    print("[AUTH] WARNING: Using default SECRET_KEY for development. DO NOT USE IN PRODUCTION!", flush=True)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return jwt.encode({"sub": str(user_id), "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        print("[AUTH] token expired", flush=True)
        return None
    except JWTError as e:
        print(f"[AUTH] JWT decode error: {type(e).__name__}", flush=True)
        return None
