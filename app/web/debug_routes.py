from collections import Counter
from pathlib import Path

from fastapi import APIRouter, Depends

from app.auth.models import User
from app.core.deps import get_admin, get_store
from app.db.base import engine
from app.db.kv_store import KeyValueStore

router = APIRouter(prefix="/debug", tags=["debug"])


@router.get("/diagnostics/db")
def db_diagnostics(admin: User = Depends(get_admin)):
    """
    Lightweight DB diagnostics for debugging deployments.

    This endpoint is meant to be exposed only when ENABLE_DEBUG_ROUTES=1.
    It intentionally avoids leaking secrets while still being useful.
    """
    url = engine.url
    backend = url.get_backend_name()

    info = {
        "backend": backend,
        "url": url.render_as_string(hide_password=True),
    }

    if backend == "sqlite" and url.database not in (None, "", ":memory:"):
        db_path = Path(url.database).resolve()
        exists = db_path.exists()
        info.update(
            {
                "sqlite_path": str(db_path),
                "sqlite_exists": exists,
                "sqlite_size_bytes": db_path.stat().st_size if exists else 0,
            }
        )
    else:
        info.update({"database": url.database, "host": url.host, "port": url.port})

    return info


@router.get("/diagnostics/kv")
def kv_diagnostics(
    store: KeyValueStore = Depends(get_store),
    admin: User = Depends(get_admin),
):
    """Number of stored records per key namespace (fluency, fluency-history, ...)."""
    counts = Counter(key.split(":", 1)[0] for key in store.keys_by_prefix(""))
    return {"namespaces": dict(sorted(counts.items()))}
