"""
Budget Server - Main FastAPI Application

PURPOSE: FastAPI routes, endpoints, and application setup
SCOPE: HTTP API layer, session handling, and error translation
DEPENDENCIES: FastAPI, all budget_server modules
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from .config import (
    ERR_DATABASE_ACCESS,
    ERR_DATABASE_OPERATION,
    ERR_UNAUTHORIZED,
    SESSION_COOKIE_NAME,
    AppConfig,
)
from .database import TenantDatabaseLocator, TenantHandle
from .errors import (
    AuthenticationError,
    CategoryInUse,
    DuplicateName,
    NotFound,
    SchemaError,
    StorageUnavailable,
    UsernameTaken,
    ValidationError,
)
from .managers import CategoryManager, RecordManager
from .models import PublicUser
from .prediction import suggest
from .registry import SessionStore, UserRegistry
from .schemas import (
    CreateCategoryPayload,
    CreateRecordPayload,
    CredentialsPayload,
    UpdateCategoryPayload,
    UpdateRecordPayload,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCIES
# ============================================================================

async def current_user(request: Request) -> PublicUser:
    """Resolve the logged-in user from the session token and the registry.

    A token revoked by logout or account deletion, or one whose account no
    longer exists, is rejected before any tenant database is touched.
    """
    token = request.session.get("token")
    user_id = request.app.state.sessions.lookup(token)
    if user_id is None:
        raise AuthenticationError(ERR_UNAUTHORIZED)
    user = await request.app.state.registry.get_user(user_id)
    if user is None:
        request.app.state.sessions.revoke_user(user_id)
        raise AuthenticationError(ERR_UNAUTHORIZED)
    return user


async def tenant_handle(request: Request, user: PublicUser = Depends(current_user)) -> TenantHandle:
    return await request.app.state.locator.resolve(user.tenant_id)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": exc.errors})


async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    return JSONResponse(status_code=401, content={"detail": str(exc)})


async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def conflict_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def storage_unavailable_handler(request: Request, exc: StorageUnavailable) -> JSONResponse:
    logger.error("Storage unavailable during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": ERR_DATABASE_ACCESS})


async def schema_error_handler(request: Request, exc: SchemaError) -> JSONResponse:
    logger.error("Schema error during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": ERR_DATABASE_OPERATION})


# ============================================================================
# GENERAL ENDPOINTS
# ============================================================================

@router.get("/", response_class=HTMLResponse)
async def root(request: Request):
    """Serve a small banner with a per-session visit counter."""
    count = int(request.session.get("visitor_count", 0)) + 1
    request.session["visitor_count"] = count
    return HTMLResponse(
        content=f"<h1>Budget Server</h1><p>API Ready - Visit count: {count}</p>"
    )


@router.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


# ============================================================================
# AUTHENTICATION ENDPOINTS
# ============================================================================

@router.post("/auth/register", status_code=201)
async def register(payload: CredentialsPayload, request: Request):
    """Create an account. The tenant database is provisioned on first data access."""
    user = await request.app.state.registry.register(payload.username, payload.password)
    return user.to_dict()


@router.post("/auth/login")
async def login(payload: CredentialsPayload, request: Request):
    user = await request.app.state.registry.authenticate(payload.username, payload.password)
    request.app.state.sessions.revoke(request.session.get("token"))
    request.session["token"] = request.app.state.sessions.issue(user.id)
    return user.to_dict()


@router.get("/auth/me")
async def me(user: PublicUser = Depends(current_user)):
    return user.to_dict()


@router.post("/auth/logout", status_code=204)
async def logout(request: Request):
    request.app.state.sessions.revoke(request.session.get("token"))
    request.session.clear()
    return Response(status_code=204)


@router.delete("/auth/me", status_code=204)
async def delete_account(request: Request, user: PublicUser = Depends(current_user)):
    """Delete the account and its tenant database."""
    await request.app.state.registry.delete_user(user.id)
    request.app.state.sessions.revoke_user(user.id)
    await request.app.state.locator.drop(user.tenant_id)
    request.session.clear()
    return Response(status_code=204)


# ============================================================================
# RECORD ENDPOINTS
# ============================================================================

@router.post("/records", status_code=201)
async def create_record(payload: CreateRecordPayload, handle: TenantHandle = Depends(tenant_handle)):
    record = await RecordManager(handle).create_record(payload.model_dump(exclude_none=True))
    return record.to_dict()


@router.get("/records")
async def get_records(
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    order: str = Query("desc"),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    cursor: Optional[str] = Query(None),
    handle: TenantHandle = Depends(tenant_handle),
):
    """List records in an inclusive occurred_at range, paged by offset or cursor."""
    page = await RecordManager(handle).list_records(
        start=start, end=end, order=order, limit=limit, offset=offset, cursor=cursor
    )
    return page.to_dict()


@router.get("/records/suggestions")
async def get_suggestions(
    request: Request,
    category_id: int = Query(...),
    prefix: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    handle: TenantHandle = Depends(tenant_handle),
):
    """Suggest expense names for a category. Always answers, possibly with an empty list."""
    if limit is None:
        limit = request.app.state.config.suggestion_limit
    suggestions = await suggest(handle, category_id, prefix=prefix, limit=limit)
    return {"suggestions": [suggestion.to_dict() for suggestion in suggestions]}


@router.get("/records/{record_id}")
async def get_record(record_id: int, handle: TenantHandle = Depends(tenant_handle)):
    record = await RecordManager(handle).get_record(record_id)
    return record.to_dict()


@router.put("/records/{record_id}")
async def update_record(
    record_id: int, payload: UpdateRecordPayload, handle: TenantHandle = Depends(tenant_handle)
):
    record = await RecordManager(handle).update_record(
        record_id, payload.model_dump(exclude_unset=True)
    )
    return record.to_dict()


@router.delete("/records/{record_id}", status_code=204)
async def delete_record(record_id: int, handle: TenantHandle = Depends(tenant_handle)):
    await RecordManager(handle).delete_record(record_id)
    return Response(status_code=204)


# ============================================================================
# CATEGORY ENDPOINTS
# ============================================================================

@router.post("/categories", status_code=201)
async def create_category(payload: CreateCategoryPayload, handle: TenantHandle = Depends(tenant_handle)):
    category = await CategoryManager(handle).create_category(payload.name, payload.metadata)
    return category.to_dict()


@router.get("/categories")
async def get_categories(
    search: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    handle: TenantHandle = Depends(tenant_handle),
):
    page = await CategoryManager(handle).list_categories(search=search, limit=limit, offset=offset)
    return page.to_dict()


@router.get("/categories/{category_id}")
async def get_category(category_id: int, handle: TenantHandle = Depends(tenant_handle)):
    category = await CategoryManager(handle).get_category(category_id)
    return category.to_dict()


@router.put("/categories/{category_id}")
async def update_category(
    category_id: int, payload: UpdateCategoryPayload, handle: TenantHandle = Depends(tenant_handle)
):
    category = await CategoryManager(handle).update_category(
        category_id, payload.model_dump(exclude_unset=True)
    )
    return category.to_dict()


@router.delete("/categories/{category_id}", status_code=204)
async def delete_category(category_id: int, handle: TenantHandle = Depends(tenant_handle)):
    await CategoryManager(handle).delete_category(category_id)
    return Response(status_code=204)


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

def create_app(config: AppConfig) -> FastAPI:
    """Build the application around an explicit configuration."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.registry.initialize()
        logger.info("Budget server ready, data directory %s", config.data_path)
        yield

    app = FastAPI(title="Budget Server", lifespan=lifespan)
    app.state.config = config
    app.state.locator = TenantDatabaseLocator(config.data_path, busy_timeout=config.busy_timeout)
    app.state.registry = UserRegistry(config.data_path, busy_timeout=config.busy_timeout)
    app.state.sessions = SessionStore()

    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret,
        session_cookie=SESSION_COOKIE_NAME,
        max_age=config.session_expiry_days * 24 * 60 * 60,
        https_only=config.production,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Accept", "Cookie"],
    )

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(NotFound, not_found_handler)
    app.add_exception_handler(DuplicateName, conflict_handler)
    app.add_exception_handler(CategoryInUse, conflict_handler)
    app.add_exception_handler(UsernameTaken, conflict_handler)
    app.add_exception_handler(StorageUnavailable, storage_unavailable_handler)
    app.add_exception_handler(SchemaError, schema_error_handler)

    app.include_router(router)
    return app
