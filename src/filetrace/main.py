"""FileTrace FastAPI application factory.

The create_app() factory is the single entry point for building the
ASGI application.  It wires middleware (request-ID, auth guard, CORS),
error handlers and routers, and injects store implementations via
dependency injection.

Usage:
    # Local development (in-memory stores)
    from filetrace.main import create_app
    app = create_app()

    # Non-local (Supabase stores built from settings)
    app = create_app(FileTraceSettings.from_env())

    # Testing (full DI control)
    app = create_app(settings, share_store=store, audit_log=log, ...)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .audit.model import AuditLog, InMemoryAuditLog
from .audit.routes import create_audit_router
from .files.model import FileCatalog, InMemoryFileCatalog
from .files.routes import create_files_router
from .files.service import FileService
from .http_errors import register_error_handlers
from .observability.logging import configure_logging
from .observability.middleware import RequestIdMiddleware
from .security.auth_guard import AuthGuardMiddleware
from .security.token_verify import TokenVerifier, create_token_verifier
from .settings import FileTraceSettings
from .sharing.access import AccessAccountant
from .sharing.routes import create_share_router
from .sharing.service import ShareService
from .sharing.store import InMemoryShareStore, ShareStore
from .storage import InMemoryObjectStore, ObjectStore
from .users import InMemoryUserDirectory, UserDirectory

logger = logging.getLogger(__name__)

# Only used when running locally without JWT_SECRET or SUPABASE_URL.
LOCAL_DEV_JWT_SECRET = "filetrace-local-development-secret-not-for-production"


@dataclass(frozen=True)
class AppDependencies:
    """Container for all injected store instances.

    Stored on ``app.state.deps`` so tests and handlers can reach them.
    """

    share_store: ShareStore
    audit_log: AuditLog
    file_catalog: FileCatalog
    user_directory: UserDirectory
    object_store: ObjectStore


def _build_inmemory_deps(settings: FileTraceSettings) -> AppDependencies:
    return AppDependencies(
        share_store=InMemoryShareStore(),
        audit_log=InMemoryAuditLog(),
        file_catalog=InMemoryFileCatalog(),
        user_directory=InMemoryUserDirectory(),
        object_store=InMemoryObjectStore(base_url=f"{settings.public_url}/objects"),
    )


def _build_supabase_deps(settings: FileTraceSettings) -> AppDependencies:
    from .db.audit_log import SupabaseAuditLog
    from .db.file_catalog import SupabaseFileCatalog
    from .db.object_store import SupabaseObjectStore
    from .db.share_store import SupabaseShareStore
    from .db.supabase_client import SupabaseClient
    from .db.user_directory import SupabaseUserDirectory

    client = SupabaseClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
    )
    return AppDependencies(
        share_store=SupabaseShareStore(client),
        audit_log=SupabaseAuditLog(client),
        file_catalog=SupabaseFileCatalog(client),
        user_directory=SupabaseUserDirectory(client),
        object_store=SupabaseObjectStore(client, bucket=settings.storage_bucket),
    )


def _build_token_verifier(settings: FileTraceSettings) -> TokenVerifier:
    if settings.jwt_secret or settings.supabase_url:
        return create_token_verifier(
            jwt_secret=settings.jwt_secret or None,
            supabase_url=settings.supabase_url or None,
        )
    logger.warning("No JWT_SECRET configured; using the local development secret")
    return create_token_verifier(jwt_secret=LOCAL_DEV_JWT_SECRET)


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: FileTraceSettings | None = None,
    *,
    share_store: ShareStore | None = None,
    audit_log: AuditLog | None = None,
    file_catalog: FileCatalog | None = None,
    user_directory: UserDirectory | None = None,
    object_store: ObjectStore | None = None,
    token_verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Create a configured FileTrace FastAPI application.

    Args:
        settings: Application settings. Defaults to ``from_env()``.
        share_store..object_store: Store overrides. Missing ones are
            in-memory for local, Supabase-backed otherwise.
        token_verifier: Access-token verifier override.

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = FileTraceSettings.from_env()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "FileTrace settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    overrides = (share_store, audit_log, file_catalog, user_directory, object_store)
    if all(dep is not None for dep in overrides):
        defaults = None
    elif settings.is_local:
        defaults = _build_inmemory_deps(settings)
    else:
        defaults = _build_supabase_deps(settings)

    deps = AppDependencies(
        share_store=share_store or defaults.share_store,
        audit_log=audit_log or defaults.audit_log,
        file_catalog=file_catalog or defaults.file_catalog,
        user_directory=user_directory or defaults.user_directory,
        object_store=object_store or defaults.object_store,
    )
    verifier = token_verifier or _build_token_verifier(settings)

    accountant = AccessAccountant(
        deps.share_store,
        deps.audit_log,
        file_catalog=deps.file_catalog,
        object_store=deps.object_store,
    )
    share_service = ShareService(
        deps.share_store,
        deps.audit_log,
        deps.file_catalog,
        deps.user_directory,
        public_url=settings.public_url,
    )
    file_service = FileService(
        deps.file_catalog,
        deps.object_store,
        deps.share_store,
        deps.audit_log,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(
            level=settings.log_level,
            json_output=settings.log_format == "json",
        )
        logger.info("FileTrace startup (environment=%s)", settings.environment)
        yield
        if not settings.is_local:
            from .db.supabase_client import close_shared_async_client
            await close_shared_async_client()
        logger.info("FileTrace shutdown")

    app = FastAPI(
        title="FileTrace",
        description="File sharing with expiring links and an audit trail",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestID -> AuthGuard -> CORS -> route handler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Local mode has no profiles table: verified callers become recipients.
    on_identity = (
        deps.user_directory.remember
        if isinstance(deps.user_directory, InMemoryUserDirectory)
        else None
    )
    app.add_middleware(
        AuthGuardMiddleware, token_verifier=verifier, on_identity=on_identity,
    )
    app.add_middleware(RequestIdMiddleware)

    register_error_handlers(app)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
        }

    app.include_router(create_share_router(share_service, accountant))
    app.include_router(create_audit_router(deps.audit_log, deps.file_catalog))
    app.include_router(create_files_router(file_service))

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "filetrace.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
    )


# Or directly:
#   uvicorn filetrace.main:create_app --factory
