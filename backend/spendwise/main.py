import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from psycopg import Error as PsycopgError
from psycopg.errors import UniqueViolation
from starlette.exceptions import HTTPException

from spendwise.core.config import settings
from spendwise.core.errors import error_body
from spendwise.db.pool import Database
from spendwise.db.schema import apply_schema
from spendwise.routers.auth import router as auth_router
from spendwise.routers.items import router as items_router
from spendwise.routers.profile import router as profile_router

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

Path(settings.uploads_dir).mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    insecure = settings.insecure_defaults()
    if insecure:
        logger.warning("Using development defaults for %s; set them before deploying", ", ".join(insecure))
    db = Database(settings)
    db.open()
    app.state.db = db
    if settings.db_auto_migrate:
        with db.connection() as conn:
            apply_schema(conn)
    logger.info("SpendWise API running on %s", settings.base_url)
    try:
        yield
    finally:
        db.close()


app = FastAPI(title="SpendWise API", lifespan=lifespan)

app.include_router(auth_router)
app.include_router(profile_router)
app.include_router(items_router)
app.mount("/uploads", StaticFiles(directory=settings.uploads_dir), name="uploads")


@app.get("/")
def root():
    return {"message": "API is running"}


@app.get("/health")
def health():
    return {"ok": True}


@app.exception_handler(HTTPException)
def http_exc_handler(_: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, getattr(exc, "details", None)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
def validation_exc_handler(_: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}"
        for err in exc.errors()
    )
    return JSONResponse(status_code=400, content=error_body("Invalid request", problems))


@app.exception_handler(UniqueViolation)
def unique_violation_handler(_: Request, exc: UniqueViolation):
    logger.info("Unique constraint rejected a write: %s", exc.diag.constraint_name)
    return JSONResponse(status_code=400, content=error_body("Resource already exists"))


@app.exception_handler(PsycopgError)
def store_exc_handler(_: Request, exc: PsycopgError):
    logger.exception("Database operation failed")
    return JSONResponse(status_code=500, content=error_body("Database operation failed", str(exc)))


@app.exception_handler(Exception)
def unhandled_exc_handler(_: Request, exc: Exception):
    logger.exception("Unhandled error: %s", exc.__class__.__name__)
    return JSONResponse(status_code=500, content=error_body("Internal server error."))
