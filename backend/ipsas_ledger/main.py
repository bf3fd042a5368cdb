"""IPSAS Ledger -- FastAPI Application."""
import asyncio
import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ipsas_ledger.config import settings
from ipsas_ledger.database import async_engine, create_tables
from ipsas_ledger.exceptions import LedgerError
from ipsas_ledger.middleware.audit_middleware import AuditReadAccessMiddleware
from ipsas_ledger.routes import accounts, gl, org
from ipsas_ledger.services.audit_retention import purge_audit_retention
from ipsas_ledger.services.audit_service import build_event, get_audit_writer

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _system_event(action: str, details: dict | None = None) -> None:
    """Fire a SYSTEM-category audit event (non-blocking)."""
    get_audit_writer().fire_and_forget(
        build_event(action, "system", "system", None, details)
    )


scheduler = AsyncIOScheduler()


async def run_audit_retention_purge():
    """Purge expired audit events from the JSONL and SQLite stores."""
    _system_event("system.scheduler.audit_retention_purge", {"status": "started"})
    try:
        loop = asyncio.get_running_loop()
        summary = await loop.run_in_executor(
            None, purge_audit_retention, settings.AUDIT_STORAGE_PATH
        )
        _system_event("system.scheduler.audit_retention_purge", {
            "status": "completed", **summary,
        })
    except Exception as e:
        logger.exception("Audit retention purge failed")
        _system_event("system.scheduler.audit_retention_purge", {
            "status": "failed", "error": str(e),
        })


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting IPSAS Ledger API...")
    _system_event("system.startup")

    if settings.AUTO_CREATE_TABLES:
        await create_tables()
        logger.info("Database tables verified")

    if settings.AUDIT_ENABLED:
        scheduler.add_job(
            run_audit_retention_purge, "interval", hours=24, id="audit_retention_purge",
            replace_existing=True,
        )
        scheduler.start()
        logger.info("Scheduled jobs started (audit retention)")

    logger.info("IPSAS Ledger API started successfully")
    yield

    _system_event("system.shutdown")
    if scheduler.running:
        scheduler.shutdown()
    await async_engine.dispose()
    logger.info("IPSAS Ledger API shut down")


app = FastAPI(
    title="IPSAS Ledger",
    description="Fund-accounting general ledger: chart of accounts, journal entries, posting and reversal",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Read-access audit middleware for sensitive endpoints
LEDGER_SENSITIVE_PREFIXES = [
    "/api/gl/transactions",
]
app.add_middleware(
    AuditReadAccessMiddleware,
    writer=get_audit_writer(),
    prefixes=LEDGER_SENSITIVE_PREFIXES,
)

app.include_router(org.router)
app.include_router(accounts.router)
app.include_router(gl.router)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "IPSAS Ledger API", "version": "1.0.0"}
