from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from app.core.config import ENABLE_DEBUG_ROUTES
from app.db.base import Base, engine
from app.auth.models import User  # noqa: F401  Import for table creation
from app.db.kv_store import KVEntry  # noqa: F401  Import for table creation

from app.auth.routes import router as auth_router
from app.api.routes import router as api_router
from app.fluency.routes import router as fluency_router
from app.web.debug_routes import router as debug_router


app = FastAPI(title="Fluency", version="0.1.0")

# Only expose debug routes (including diagnostics) when explicitly enabled.
if ENABLE_DEBUG_ROUTES:
    app.include_router(debug_router)

# Create database tables (still useful in dev; in production prefer Alembic)
Base.metadata.create_all(bind=engine)

# Include routers
app.include_router(auth_router)
app.include_router(api_router)
app.include_router(fluency_router)


@app.get("/", include_in_schema=False)
def root():
    return RedirectResponse(url="/docs")
