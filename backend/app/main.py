import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from app.core.config import settings
from app.core.database import engine, Base, SessionLocal
from app.core.exceptions import EngineError, engine_error_handler
from app.core.scheduler import start_scheduler, stop_scheduler
from app.api.routes import activity, files, folders
from app.services.folder_service import seed_default_folders
# Register every table on Base.metadata before create_all
from app.models import activity_log, file, folder, user  # noqa: F401

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create database tables from all models that inherit from Base
# In production, use migrations (Alembic) instead of create_all
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage app lifecycle events.

    Startup: seed default folders, start the aggregate repair scheduler
    Shutdown: stop the scheduler
    """
    if settings.SEED_DEFAULT_FOLDERS:
        db = SessionLocal()
        try:
            seed_default_folders(db)
        finally:
            db.close()
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="DocShare API",
    description="Department document sharing with folder access control and audit trail",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Engine errors (validation, not found, conflict, ledger failure) -> JSON responses
app.add_exception_handler(EngineError, engine_error_handler)

# All routes are prefixed with /api for consistency
app.include_router(folders.router, prefix="/api")
app.include_router(files.router, prefix="/api")
app.include_router(activity.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint - API information"""
    return {"message": "DocShare API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check endpoint - used by monitoring/deployment tools"""
    return {"status": "healthy"}
