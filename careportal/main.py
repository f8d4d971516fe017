import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
from . import (
    models,  # noqa: F401
    models_invoice,  # noqa: F401
)
from .database import Base, engine
from .domain.bookings.router import router as bookings_router
from .domain.invoices.router import router as invoices_router
from .domain.payments.router import router as payments_router
from .domain.pricing.router import router as pricing_router
from .domain.reminders.router import router as cron_router
from .domain.webhooks.router import router as webhooks_router
from .shared.errors import AppError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Care Portal API", version="1.0.0", lifespan=lifespan)


def correlation_id_for(request: Request) -> str:
    return request.headers.get("x-correlation-id") or uuid.uuid4().hex


def error_response(status_code: int, error: str, detail, correlation_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": detail, "correlationId": correlation_id},
        headers={"X-Correlation-Id": correlation_id},
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    correlation_id = correlation_id_for(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message} [{correlation_id}]")
    return error_response(exc.status_code, exc.code, exc.message, correlation_id)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    correlation_id = correlation_id_for(request)
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return error_response(400, "ValidationError", jsonable_encoder(exc.errors()), correlation_id)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    correlation_id = correlation_id_for(request)
    logger.exception(f"{request.method} {request.url.path} - Unhandled error [{correlation_id}]: {exc}")
    return error_response(500, "InternalError", "Something went wrong. Please contact support.", correlation_id)


# CORS Configuration
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-Id"],
)

# Routes
app.include_router(pricing_router)
app.include_router(bookings_router)
app.include_router(payments_router)
app.include_router(invoices_router)
app.include_router(webhooks_router)
app.include_router(cron_router)


@app.get("/")
def root():
    return {"message": "Care Portal API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
