"""
FastAPI application main module.
Hosts the reconcile control surface and runs the sync engine (queue, scheduler,
bootstrap coordinator) for the lifetime of the process.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import threading
import time
import uuid
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import text

from identity_sync import config
from identity_sync.api.v1 import api_router
from identity_sync.database import Base, IdentitySessionLocal, RecordsSessionLocal, identity_engine, records_engine
from identity_sync.eventbus import EventBus, create_event_bus
from identity_sync.jobs.queue import ReconcileQueue
from identity_sync.jobs.worker import SyncScheduler
from identity_sync.models.db import IdentityAccount, IdentityUser, Record, RecordAccount
from identity_sync.services.authorization import SignatureGuard
from identity_sync.services.bootstrap import BootstrapCoordinator, announce_ready
from identity_sync.services.identity_directory import SqlIdentityDirectory
from identity_sync.services.record_store import SqlRecordStore
from identity_sync.services.sources import SignedRecordWriter
from identity_sync.storage import SecondaryStorage, create_storage
from identity_sync.utils import setup_logging, get_logger
from identity_sync.utils.dedup_logger import DeduplicatedLogger

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/identity-sync.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "identity-sync"
VERSION = "1.0.0"


@dataclass
class SyncRuntime:
    storage: SecondaryStorage
    event_bus: EventBus
    identity: SqlIdentityDirectory
    record_store: SqlRecordStore
    queue: ReconcileQueue
    scheduler: SyncScheduler
    coordinator: BootstrapCoordinator
    bootstrap_thread: Optional[threading.Thread] = field(default=None, repr=False)

    def start_bootstrap(self, *, announce_peer: bool = False) -> threading.Thread:
        """Run boot coordination on a daemon thread; a reconcile may page the whole directory."""
        self.bootstrap_thread = threading.Thread(
            target=self._bootstrap, kwargs={"announce_peer": announce_peer}, name="sync-bootstrap", daemon=True
        )
        self.bootstrap_thread.start()
        return self.bootstrap_thread

    def _bootstrap(self, *, announce_peer: bool) -> None:
        try:
            state = self.coordinator.start()
            DeduplicatedLogger(self.storage).log("bootstrap", "Bootstrap coordinator started", state=state.value)
            if announce_peer:
                announce_ready(str(config.COORDINATION_SETTINGS["peer_name"]), self.storage, self.event_bus)
        except Exception as e:
            logger.error("Bootstrap coordination failed", error=str(e), exc_info=True)

    def close(self) -> None:
        self.coordinator.stop()
        self.scheduler.stop()
        self.event_bus.close()
        self.storage.close()


def build_runtime() -> SyncRuntime:
    """Wire storage, bus, both databases, the queue and its drivers from configuration."""
    if not config.SYNC_SECRET:
        raise RuntimeError("SYNC_SECRET must be set; the record store rejects unsigned sync writes")

    Base.metadata.create_all(bind=identity_engine, tables=[IdentityUser.__table__, IdentityAccount.__table__])
    Base.metadata.create_all(bind=records_engine, tables=[Record.__table__, RecordAccount.__table__])

    storage = create_storage()
    event_bus = create_event_bus()
    identity = SqlIdentityDirectory(IdentitySessionLocal)
    record_store = SqlRecordStore(RecordsSessionLocal, SignatureGuard(storage, config.SYNC_SECRET), storage)
    queue = ReconcileQueue(identity, SignedRecordWriter(record_store, config.SYNC_SECRET))
    scheduler = SyncScheduler(queue)
    coordinator = BootstrapCoordinator(
        str(config.COORDINATION_SETTINGS["service_name"]),
        str(config.COORDINATION_SETTINGS["peer_name"]),
        storage,
        event_bus,
        queue.seed_full_reconcile,
    )
    return SyncRuntime(storage, event_bus, identity, record_store, queue, scheduler, coordinator)


_runtime: Optional[SyncRuntime] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Application startup initiated")

    global _runtime
    try:
        _runtime = build_runtime()
        # expose queue in app state for endpoints without importing main (avoid circular)
        app.state.sync_queue = _runtime.queue  # type: ignore[attr-defined]
        app.state.sync_runtime = _runtime  # type: ignore[attr-defined]
        _runtime.scheduler.start()
        _runtime.start_bootstrap(announce_peer=bool(config.COORDINATION_SETTINGS.get("host_record_store")))
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if _runtime:
            _runtime.close()
            logger.info("Sync scheduler and coordinator stopped")
        app.state.sync_queue = None  # type: ignore[attr-defined]
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Identity Sync",
    description="""
    Keeps a record store in step with an authoritative identity directory.

    ## Features
    * **Immediate mirroring** - user operations are pushed to the front of the queue
    * **Full reconciliation** - periodic paged pass corrects drift and (optionally) prunes orphans
    * **Signed writes** - the record store accepts sync writes only with a fresh HMAC signature
    * **Boot coordination** - readiness timestamps decide when a reconcile is needed

    ## Authentication
    Reconcile endpoints require the shared token header:
    ```
    X-Reconcile-Token: <RECONCILE_TOKEN>
    ```
    """,
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Compression middleware for better performance
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Request ID and logging middleware
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response

# Custom exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": exc.errors(),
            "request_id": request_id
        }
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        }
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )

# Health check endpoints
@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": time.time(),
        "storage_backend": config.STORAGE_SETTINGS["backend"],
        "event_bus_backend": config.EVENT_BUS_SETTINGS["backend"],
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
def detailed_health_check(request: Request):
    """Detailed health check with database, storage and queue status."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": time.time(),
        "checks": {}
    }

    for name, session_factory in (("identity_database", IdentitySessionLocal), ("records_database", RecordsSessionLocal)):
        try:
            with session_factory() as db:
                db.execute(text("SELECT 1"))
            health_status["checks"][name] = "healthy"
        except Exception as e:
            health_status["checks"][name] = f"unhealthy: {str(e)}"
            health_status["status"] = "degraded"

    runtime: Optional[SyncRuntime] = getattr(request.app.state, "sync_runtime", None)
    if runtime is not None:
        storage_check = getattr(runtime.storage, "health_check", None)
        if callable(storage_check):
            healthy = storage_check()
            health_status["checks"]["storage"] = "healthy" if healthy else "unavailable"
            if not healthy:
                health_status["status"] = "degraded"
        health_status["checks"]["bootstrap"] = runtime.coordinator.state.value

    queue = getattr(request.app.state, "sync_queue", None)
    if queue is not None:
        snap = queue.status()
        # Avoid dumping the key sample
        health_status["checks"]["queue"] = {
            k: v for k, v in snap.items() if k in {"queue_size", "processing", "reconciling", "failed"}
        }

    return health_status

@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Identity Sync API",
        "version": VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/auth"
    }

app.include_router(api_router, prefix="/api/auth")

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "identity_sync.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
        access_log=True
    )
