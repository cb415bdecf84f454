from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os
from datetime import datetime

from booknexus.core.config import settings
from booknexus.database import init_db, check_db_health
from booknexus.routers import books, recommendations, entities
from booknexus.utils.timing import now_ms

# ----------------------------
# Logging
# ----------------------------
logger = logging.getLogger("booknexus")
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Server fingerprint for debugging
SERVER_BOOT_ID = f"booknexus-backend::{os.getpid()}::{datetime.utcnow().isoformat()}"

app = FastAPI(title="Book Nexus", debug=settings.DEBUG)


# ----------------------------
# CORS
# ----------------------------
cors_origins = settings.cors_origins_list
logger.info("[CORS] allow_origins=%s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = now_ms()
    logger.info("request received method=%s path=%s", request.method, request.url.path)
    response = await call_next(request)
    logger.info(
        "request completed method=%s path=%s status=%s duration_ms=%.0f",
        request.method, request.url.path, response.status_code, now_ms() - start,
    )
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("[UNHANDLED] %s %s", request.method, request.url.path)

    response = JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"}
    )

    # Ensure CORS headers are present in error responses
    origin = request.headers.get("origin")
    if origin and origin in cors_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


# ----------------------------
# Routers
# ----------------------------
app.include_router(books.router, prefix="/api")
app.include_router(recommendations.router, prefix="/api")
app.include_router(entities.authors_router, prefix="/api")
app.include_router(entities.publishers_router, prefix="/api")
app.include_router(entities.series_router, prefix="/api")


@app.on_event("startup")
def on_startup() -> None:
    logger.info("[BOOT] %s", SERVER_BOOT_ID)
    init_db()


@app.get("/health")
def health_check():
    return check_db_health()


@app.get("/api/health")
def api_health_check():
    return check_db_health()
