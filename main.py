from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import database
from auth import AuthService, get_current_admin, require_roles
from availability_service import AvailabilityService
from content_service import ContentService
from database import get_db
from errors import AppError, InternalError, error_body
from limiter import GLOBAL_SCOPE, SEARCH_LIMIT_MESSAGE, client_ip, limiter, rate_limit_exceeded_handler
from logger import access_log_middleware, setup_logging
from request_service import RequestService
from schemas import Availability, Content, ContentRequest, ContentRequestUpdate

setup_logging()

TRIAGE_ROLES = ("admin", "superadmin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting ArcXZone API ({config.APP_ENV})")
    try:
        database.ensure_indexes(database.db)
        AuthService(database.db).ensure_admin(config.ADMIN_EMAIL, config.ADMIN_PASSWORD)
    except PyMongoError as e:
        logger.error(f"Database bootstrap failed: {e}")
        raise
    yield
    database.client.close()
    logger.info("ArcXZone API stopped")


# -----------------------------
# App and Middleware
# -----------------------------
app = FastAPI(title="ArcXZone API", version="1.0.0", lifespan=lifespan)
app.state.limiter = limiter

app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_origin_regex=r"https://.*\.vercel\.app",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(access_log_middleware)


# -----------------------------
# Error handling
# -----------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc, AppError):
        message = exc.message
    elif exc.status_code == status.HTTP_404_NOT_FOUND:
        message = f"Route not found: {request.url.path}"
    else:
        message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, message),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_body(400, message))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    code = InternalError.status_code
    return JSONResponse(status_code=code, content=error_body(code, InternalError.default_message))


app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# -----------------------------
# Schemas (request/response)
# -----------------------------
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)


class AdminPublic(BaseModel):
    id: str
    email: EmailStr
    role: str


class LoginResponse(BaseModel):
    token: str
    admin: AdminPublic


# -----------------------------
# Basic routes
# -----------------------------
@app.get("/")
@limiter.exempt
def root():
    return {
        "message": "ArcXZone API Server",
        "version": app.version,
        "timestamp": datetime.now(timezone.utc),
        "endpoints": {"health": "/api/health", "content": "/api/content", "auth": "/api/auth", "requests": "/api/requests"},
    }


@app.get("/api/health")
@limiter.exempt
def health(db: Database = Depends(get_db)):
    try:
        db.list_collection_names()
        db_status = "Connected"
    except PyMongoError as e:
        logger.warning(f"Health check could not reach the database: {e}")
        db_status = "Disconnected"
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc),
        "database": db_status,
        "environment": config.APP_ENV,
    }


# -----------------------------
# Auth endpoints
# -----------------------------
@app.post("/api/auth/login", response_model=LoginResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    return AuthService(db).login(payload.email, payload.password)


@app.get("/api/auth/profile")
def profile(admin: Dict[str, Any] = Depends(get_current_admin), db: Database = Depends(get_db)):
    return AuthService(db).profile(admin["id"])


# -----------------------------
# Content listing + search
# -----------------------------
@app.get("/api/content")
def list_content(
    type: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    sort: str = "-releaseDate",
    q: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return ContentService(db).list(type=type, page=page, limit=limit, sort=sort, q=q)


@app.get("/api/content/search")
@limiter.shared_limit(config.API_RATE_LIMIT, scope=GLOBAL_SCOPE)
@limiter.limit(config.SEARCH_RATE_LIMIT, error_message=SEARCH_LIMIT_MESSAGE)
def search_content(request: Request, q: Optional[str] = None, type: Optional[str] = None, db: Database = Depends(get_db)):
    return ContentService(db).search(q, type)


@app.get("/api/content/type/{content_type}")
def list_content_by_type(
    content_type: str,
    page: int = 1,
    limit: int = 20,
    sort: str = "-releaseDate",
    db: Database = Depends(get_db),
):
    return ContentService(db).list_by_type(content_type, page=page, limit=limit, sort=sort)


@app.get("/api/content/{content_id}")
def get_content(content_id: str, db: Database = Depends(get_db)):
    return ContentService(db).get_by_id(content_id)


# -----------------------------
# Content CRUD (admin)
# -----------------------------
@app.post("/api/content", status_code=201)
def create_content(payload: Content, _: Dict[str, Any] = Depends(get_current_admin), db: Database = Depends(get_db)):
    return ContentService(db).create(payload)


@app.put("/api/content/{content_id}")
def replace_content(
    content_id: str, payload: Content, _: Dict[str, Any] = Depends(get_current_admin), db: Database = Depends(get_db)
):
    return ContentService(db).replace(content_id, payload)


@app.delete("/api/content/{content_id}")
def delete_content(content_id: str, _: Dict[str, Any] = Depends(get_current_admin), db: Database = Depends(get_db)):
    return ContentService(db).delete(content_id)


# -----------------------------
# Availability (admin)
# -----------------------------
@app.get("/api/content/{content_id}/availability")
def list_availability(content_id: str, _: Dict[str, Any] = Depends(get_current_admin), db: Database = Depends(get_db)):
    return AvailabilityService(db).list_for_content(content_id)


@app.post("/api/content/{content_id}/availability", status_code=201)
def create_availability(
    content_id: str, payload: Availability, _: Dict[str, Any] = Depends(get_current_admin), db: Database = Depends(get_db)
):
    return AvailabilityService(db).create(content_id, payload)


@app.put("/api/content/{content_id}/availability/{availability_id}")
def replace_availability(
    content_id: str,
    availability_id: str,
    payload: Availability,
    _: Dict[str, Any] = Depends(get_current_admin),
    db: Database = Depends(get_db),
):
    return AvailabilityService(db).replace(content_id, availability_id, payload)


@app.delete("/api/content/{content_id}/availability/{availability_id}")
def delete_availability(
    content_id: str, availability_id: str, _: Dict[str, Any] = Depends(get_current_admin), db: Database = Depends(get_db)
):
    return AvailabilityService(db).delete(content_id, availability_id)


# -----------------------------
# Content requests
# -----------------------------
@app.post("/api/requests", status_code=201)
def submit_request(payload: ContentRequest, request: Request, db: Database = Depends(get_db)):
    return RequestService(db).create(payload, created_ip=client_ip(request))


@app.get("/api/requests")
def list_requests(
    status_filter: Optional[str] = Query(None, alias="status"),
    content_type: Optional[str] = Query(None, alias="contentType"),
    priority: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    _: Dict[str, Any] = Depends(require_roles(*TRIAGE_ROLES)),
    db: Database = Depends(get_db),
):
    return RequestService(db).list(
        status=status_filter,
        content_type=content_type,
        priority=priority,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@app.get("/api/requests/{request_id}")
def get_request(request_id: str, _: Dict[str, Any] = Depends(require_roles(*TRIAGE_ROLES)), db: Database = Depends(get_db)):
    return RequestService(db).get_by_id(request_id)


@app.patch("/api/requests/{request_id}")
def update_request(
    request_id: str,
    changes: ContentRequestUpdate,
    _: Dict[str, Any] = Depends(require_roles(*TRIAGE_ROLES)),
    db: Database = Depends(get_db),
):
    return RequestService(db).patch_fields(request_id, changes)


@app.delete("/api/requests/{request_id}", status_code=204)
def delete_request(request_id: str, _: Dict[str, Any] = Depends(require_roles(*TRIAGE_ROLES)), db: Database = Depends(get_db)):
    RequestService(db).delete(request_id)
    return Response(status_code=204)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
