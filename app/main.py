import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.utils.exceptions import AppException

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def _seed_admin_user() -> None:
    """Create the tables (dev SQLite) and the default admin account."""
    from app.database import SessionLocal, init_db
    from app.services.auth_service import ensure_default_admin

    init_db()
    db = SessionLocal()
    try:
        ensure_default_admin(
            db, settings.DEFAULT_ADMIN_USERNAME, settings.DEFAULT_ADMIN_PASSWORD
        )
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: make sure an admin can log in
    _seed_admin_user()
    logger.info("%s started", settings.APP_NAME)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s", request.method, request.url.path, exc.message)
    else:
        logger.debug("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

from app.routers import auth  # noqa: E402

app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])

# Batch cell writes
from app.routers import cells  # noqa: E402

app.include_router(cells.router, prefix="/api/tables", tags=["Cells"])

# Records CRUD and listing
from app.routers import records  # noqa: E402

app.include_router(records.router, prefix="/api/tables", tags=["Records"])

# CSV import, progress and failure report
from app.routers import imports  # noqa: E402

app.include_router(imports.router, prefix="/api/tables", tags=["Import"])

# Audit log
from app.routers import logs  # noqa: E402

app.include_router(logs.router, prefix="/api/logs", tags=["Logs"])
