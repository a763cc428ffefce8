"""
Main FastAPI application.
- Preflight database test
- Ledger and HTTP errors rendered as {"success": false, "error": ...}
"""
from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from contextlib import asynccontextmanager
import logging

from bigpos.config import settings
from bigpos.database import engine, get_db, test_connection, SessionLocal, atomic
from bigpos import models
from bigpos.crud.users import crud_user
from bigpos.exceptions import LedgerError
from bigpos.routers import (
    auth_router,
    store_router,
    loans_router,
    gas_router,
    nfc_router,
    retailer_router,
    wholesaler_router,
    admin_router,
    webhooks_router,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def bootstrap_admin() -> None:
    if not (settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD):
        return
    db = SessionLocal()
    try:
        with atomic(db):
            crud_user.ensure_admin(db, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    except (LedgerError, SQLAlchemyError) as e:
        logger.error(f"Admin bootstrap failed: {e}")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Preflight the database, create tables and seed the admin account."""
    logger.info(f"Starting {settings.APP_NAME}")

    logger.info("Running preflight database test...")
    success, message = test_connection()
    if not success:
        logger.error(f"Preflight test failed: {message}")
    else:
        logger.info(f"Preflight test passed: {message}")

    try:
        models.Base.metadata.create_all(bind=engine)
        logger.info("Database tables verified")
    except SQLAlchemyError as e:
        logger.warning(f"Database table creation: {e}")

    bootstrap_admin()
    if settings.DEV_MODE:
        logger.warning("DEV_MODE is on: mobile money payments are simulated")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")


app = FastAPI(
    title=settings.APP_NAME,
    description="Multi-tenant commerce backend: wallets, orders, loans, gas and NFC cards",
    version=settings.APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal Server Error"})


app.include_router(auth_router, prefix="/api")
app.include_router(store_router, prefix="/api")
app.include_router(loans_router, prefix="/api")
app.include_router(gas_router, prefix="/api")
app.include_router(nfc_router, prefix="/api")
app.include_router(retailer_router, prefix="/api")
app.include_router(wholesaler_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Reports database status without failing when it is unreachable."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        db_status = f"error: {str(e)}"
        logger.warning(f"Health check database error: {e}")

    return {
        "status": "healthy",
        "service": "bigpos-backend",
        "database": db_status,
        "dev_mode": settings.DEV_MODE,
        "version": settings.APP_VERSION,
    }


@app.get("/")
def root():
    return {
        "message": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "currency": settings.CURRENCY,
        "endpoints": {
            "docs": "/api/docs",
            "health": "/health",
            "auth": "/api/auth/login",
            "store": "/api/store",
            "retailer": "/api/retailer",
            "wholesaler": "/api/wholesaler",
            "nfc": "/api/nfc",
            "admin": "/api/admin",
        }
    }
