"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from readersync.auth.sessions import SessionStore
from readersync.config import Settings, get_settings
from readersync.db.session import create_engine, create_session_factory, init_db, session_scope
from readersync.errors import INVALID_REQUEST, SERVER_ERROR, TOO_LARGE, UNAUTHORISED, SyncError
from readersync.files.content_store import ContentStore
from readersync.limiter import limiter
from readersync.sync.coordinator import SyncCoordinator
from readersync.sync.routes import router as sync_router
from readersync.sync.store import SyncStore
from readersync.users.routes import router as users_router
from readersync.users.service import ensure_admin_exists

log = logging.getLogger(__name__)

# Multipart framing on top of the file itself
_UPLOAD_OVERHEAD_BYTES = 1024 * 1024


def _setup_logging(settings: Settings) -> None:
    """Configure logging from settings (stderr always; optional file)."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("readersync")
    root.setLevel(level)
    root.handlers.clear()
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root.addHandler(sh)
    if settings.log_file and str(settings.log_file).strip():
        try:
            fh = logging.FileHandler(settings.log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            root.info("Logging to file %s", settings.log_file)
        except OSError as e:
            root.warning("Could not open log file %s: %s", settings.log_file, e)
    else:
        root.debug("Logging to stderr only (no log_file set)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create directories and tables, bootstrap the first user; dispose the engine on shutdown."""
    settings: Settings = app.state.settings
    log.info("Startup: db=%s library=%s", settings.db_path, settings.library_path)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.library_path.mkdir(parents=True, exist_ok=True)
    settings.upload_tmp_path.mkdir(parents=True, exist_ok=True)
    await init_db(app.state.engine)
    async with session_scope(app.state.session_factory) as session:
        await ensure_admin_exists(session, settings)
    log.info("Startup complete (compat version %s)", settings.compat_version)
    yield
    await app.state.engine.dispose()
    log.info("Shutdown")


def _validation_reason(exc: RequestValidationError) -> str:
    """First validation error as 'field.path: message'."""
    errors = exc.errors()
    if not errors:
        return "invalid request"
    first = errors[0]
    loc = [str(p) for p in first.get("loc", ()) if p != "body"]
    msg = first.get("msg", "invalid value")
    return f"{'.'.join(loc)}: {msg}" if loc else msg


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app and wire its stores onto app.state."""
    settings = settings or get_settings()
    _setup_logging(settings)

    app = FastAPI(title="Reader Sync API", version="0.1.0", lifespan=lifespan)
    engine = create_engine(settings.db_path)
    session_factory = create_session_factory(engine)
    content_store = ContentStore(session_factory, settings.library_path)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.sessions = SessionStore()
    app.state.content = content_store
    app.state.coordinator = SyncCoordinator(SyncStore(session_factory), content_store, settings)

    if settings.cors_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

    @app.middleware("http")
    async def limit_upload_size(request: Request, call_next):
        """Reject oversized uploads from Content-Length before the body is read."""
        max_bytes = settings.max_file_size_bytes
        if request.url.path == "/uploadBook" and max_bytes > 0:
            declared = request.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > max_bytes + _UPLOAD_OVERHEAD_BYTES:
                log.warning("Upload rejected: Content-Length %s exceeds limit", declared)
                return JSONResponse(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    content=SyncError(TOO_LARGE).to_body(),
                )
        return await call_next(request)

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        headers = None
        if exc.code == UNAUTHORISED and exc.status_code == status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        reason = _validation_reason(exc)
        log.warning("Invalid request to %s: %s", request.url.path, reason)
        return JSONResponse(content=SyncError(INVALID_REQUEST, reason).to_body())

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Return generic 500 without leaking stack trace or internals."""
        if isinstance(exc, HTTPException):
            raise exc
        log.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=SyncError(SERVER_ERROR).to_body(),
        )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.include_router(users_router)
    app.include_router(sync_router)

    @app.get("/health")
    @limiter.exempt
    def health() -> JSONResponse:
        """Health check for Docker and the reverse proxy. Exempt from rate limiting."""
        return JSONResponse(content={"status": "ok"})

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("readersync.main:app", host=settings.host, port=settings.port)
