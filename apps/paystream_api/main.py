"""Main FastAPI application for the PayStream backend.

This module provides the REST API for salary stream records, the employee
directory and the audit log (query, statistics, export and retention).
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Optional

from fastapi import Depends, FastAPI, Header, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from packages.audit_store import (
    AuditStore,
    BackgroundAuditSink,
    LogCategory,
    LogLevel,
    RequestAuditMiddleware,
    RequestIdMiddleware,
    StoreAuditSink,
)
from packages.employee_directory import EmployeeDirectory, EmployeeRepository
from packages.log_query import DEFAULT_DAYS_TO_KEEP, LogQueryEngine, RetentionScheduler
from packages.paystream_config import PayStreamConfig, get_paystream_config
from packages.paystream_errors import (
    EmployeeExistsError,
    PayStreamError,
    ServiceUnavailableError,
    StreamConflictError,
)
from packages.schemas import (
    ADDRESS_PATTERN,
    AddEmployeeRequest,
    BulkAddEmployeesRequest,
    BulkAddResponse,
    CancelStreamRequest,
    CreateStreamRequest,
    EmployeeDeletedResponse,
    EmployeeListResponse,
    EmployeeResponse,
    LogCleanupResponse,
    LogQueryResponse,
    LogStatsResponse,
    Pagination,
    StreamListResponse,
    StreamResponse,
    SyncStreamRequest,
    UpdateEmployeeRequest,
    UpdateStreamStatusRequest,
)
from packages.stream_lifecycle import StreamController
from packages.stream_registry import StreamRepository, StreamStatus
from packages.structured_logging import get_logger, get_request_id, setup_logging
from packages.wallet_auth import (
    WalletAuthError,
    check_admin,
    check_ownership,
    require_wallet,
)

logger = get_logger(__name__)

# Global configuration
config: PayStreamConfig | None = None

# Global audit store instance
audit_store: AuditStore | None = None

# Global audit sink (background or synchronous)
audit_sink: BackgroundAuditSink | StoreAuditSink | None = None

# Global log query engine instance
log_engine: LogQueryEngine | None = None

# Global stream repository instance
stream_repository: StreamRepository | None = None

# Global stream controller instance
stream_controller: StreamController | None = None

# Global employee directory instance
employee_directory: EmployeeDirectory | None = None

# Global retention scheduler (only when the sweep is enabled)
retention_scheduler: RetentionScheduler | None = None

_started_at = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan management."""
    global config, audit_store, audit_sink, log_engine, stream_repository
    global stream_controller, employee_directory, retention_scheduler, _started_at

    config = get_paystream_config()
    setup_logging(
        level=config.log_level,
        log_file=config.log_file,
        json_output=config.log_json,
    )

    # Audit log
    audit_store = AuditStore(config.audit_db_path)
    if config.audit_async:
        audit_sink = BackgroundAuditSink(audit_store, max_workers=config.audit_workers)
    else:
        audit_sink = StoreAuditSink(audit_store)
    log_engine = LogQueryEngine(audit_store, sink=audit_sink)

    # Streams
    stream_repository = StreamRepository(config.streams_db_path)
    stream_controller = StreamController(stream_repository, audit_sink=log_engine)

    # Employee directory
    employee_directory = EmployeeDirectory(
        EmployeeRepository(config.employees_db_path), log_engine=log_engine
    )

    if config.retention_sweep_enabled:
        retention_scheduler = RetentionScheduler(
            log_engine,
            days_to_keep=config.retention_days,
            cron=config.retention_sweep_cron,
            timezone=config.timezone,
        )
        retention_scheduler.start()

    _started_at = time.monotonic()
    logger.info("paystream_api_started", **config.to_dict())
    log_engine.log_system(
        "PayStream backend started", details=config.to_dict(), tags=["startup"]
    )

    yield

    if retention_scheduler is not None:
        retention_scheduler.stop(wait=False)
        retention_scheduler = None

    sink, audit_sink = audit_sink, None
    if isinstance(sink, BackgroundAuditSink):
        sink.close(wait_for_pending=True)

    logger.info("paystream_api_stopped")


# Create FastAPI app
app = FastAPI(
    title="PayStream Backend API",
    description="Salary stream records mirrored from chain, with a structured audit log",
    version="0.1.0",
    lifespan=lifespan,
)

# Request audit runs inside the request ID middleware so records carry the ID
app.add_middleware(RequestAuditMiddleware, sink_getter=lambda: audit_sink)
app.add_middleware(RequestIdMiddleware)


# ----------------------------------------------------------------------
# Error handling
# ----------------------------------------------------------------------


@app.exception_handler(PayStreamError)
async def paystream_error_handler(request: Request, exc: PayStreamError) -> JSONResponse:
    """Map domain errors to {success: false, error} responses."""
    content: dict[str, Any] = {"success": False, "error": exc.message}

    if isinstance(exc, StreamConflictError) and exc.existing is not None:
        content["stream"] = exc.existing.model_dump(mode="json")
    if isinstance(exc, EmployeeExistsError) and exc.existing is not None:
        content["employee"] = exc.existing.model_dump(mode="json")

    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=exc.message,
            cause=repr(exc.__cause__) if exc.__cause__ else None,
        )

    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors as 400s."""
    serializable_errors = []
    for error in exc.errors():
        serializable_errors.append({
            "type": error.get("type"),
            "loc": [str(loc) for loc in error.get("loc", [])],
            "msg": error.get("msg"),
            "input": str(error.get("input", ""))[:100],  # Truncate long inputs
        })

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Invalid request",
            "errors": serializable_errors,
            "request_id": get_request_id(),
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: record a system error, answer with a generic 500."""
    logger.error("unhandled_error", path=request.url.path, exc_info=exc)
    if log_engine is not None:
        log_engine.log_system(
            "Unhandled server error",
            level=LogLevel.ERROR,
            details={"url": str(request.url), "method": request.method},
            error=exc,
        )
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------


def get_controller() -> StreamController:
    if stream_controller is None:
        raise ServiceUnavailableError("Stream controller not initialized")
    return stream_controller


def get_directory() -> EmployeeDirectory:
    if employee_directory is None:
        raise ServiceUnavailableError("Employee directory not initialized")
    return employee_directory


def get_log_engine() -> LogQueryEngine:
    if log_engine is None:
        raise ServiceUnavailableError("Log engine not initialized")
    return log_engine


def _log_denied(request: Request, exc: WalletAuthError, message: str, tags: list[str]) -> None:
    if log_engine is None:
        return
    log_engine.log_security(
        message,
        level=LogLevel.ERROR if exc.status_code >= 500 else LogLevel.WARN,
        user_address=exc.user_address,
        details={
            "path": request.url.path,
            "method": request.method,
            "client": request.client.host if request.client else None,
            "reason": exc.message,
        },
        tags=tags,
    )


def caller_wallet(
    request: Request,
    x_wallet_address: Optional[str] = Header(None),
) -> str:
    """Calling wallet from the X-Wallet-Address header."""
    try:
        return require_wallet(x_wallet_address)
    except WalletAuthError as e:
        _log_denied(request, e, "Request without valid wallet address", ["security"])
        raise


def require_owner(request: Request, caller: str, *owners: str) -> None:
    """Ownership check that records denied attempts."""
    try:
        check_ownership(caller, *owners)
    except WalletAuthError as e:
        _log_denied(
            request,
            e,
            "Ownership check failed - accessing another user's data",
            ["unauthorized", "ownership"],
        )
        raise


def admin_wallet(
    request: Request,
    x_wallet_address: Optional[str] = Header(None),
    wallet_address: Optional[str] = Query(None),
) -> str:
    """Admin wallet check for log endpoints."""
    admin_address = config.admin_address if config else None
    try:
        caller = check_admin(x_wallet_address or wallet_address, admin_address)
    except WalletAuthError as e:
        _log_denied(request, e, "Unauthorized admin access attempt", ["unauthorized", "admin"])
        raise

    if log_engine is not None:
        log_engine.log_security(
            "Admin access granted",
            level=LogLevel.INFO,
            user_address=caller,
            details={"path": request.url.path},
            tags=["admin", "authorized"],
        )
    return caller


# ----------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------


@app.get("/api/health")
async def health() -> dict:
    """Health check endpoint."""
    return {
        "success": True,
        "message": "PayStream Backend API",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(time.monotonic() - _started_at, 3),
    }


# ----------------------------------------------------------------------
# Streams
# ----------------------------------------------------------------------


@app.get("/api/streams/{employer_address}", response_model=StreamListResponse)
def list_streams(
    request: Request,
    employer_address: str = Path(..., pattern=ADDRESS_PATTERN),
    status: Optional[StreamStatus] = Query(None, description="Filter by status"),
    caller: str = Depends(caller_wallet),
    controller: StreamController = Depends(get_controller),
) -> StreamListResponse:
    """Get all streams of an employer, newest first."""
    require_owner(request, caller, employer_address)
    streams = controller.list_streams(employer_address, status)
    return StreamListResponse(count=len(streams), streams=streams)


@app.get("/api/streams/{employer_address}/{employee_address}", response_model=StreamResponse)
def get_stream(
    request: Request,
    employer_address: str = Path(..., pattern=ADDRESS_PATTERN),
    employee_address: str = Path(..., pattern=ADDRESS_PATTERN),
    caller: str = Depends(caller_wallet),
    controller: StreamController = Depends(get_controller),
) -> StreamResponse:
    """Get the open stream of a pair."""
    require_owner(request, caller, employer_address, employee_address)
    return StreamResponse(stream=controller.get_open_stream(employer_address, employee_address))


@app.post("/api/streams", response_model=StreamResponse, status_code=201)
def create_stream(
    request: Request,
    body: CreateStreamRequest,
    caller: str = Depends(caller_wallet),
    controller: StreamController = Depends(get_controller),
) -> StreamResponse:
    """
    Record a stream created on chain.

    Answers 409 with the existing record if the pair already has an open
    stream.
    """
    require_owner(request, caller, body.employer_address)
    stream = controller.create_stream(
        body.employer_address, body.employee_address, body.to_terms()
    )
    return StreamResponse(stream=stream)


@app.patch(
    "/api/streams/{employer_address}/{employee_address}/status",
    response_model=StreamResponse,
)
def update_stream_status(
    request: Request,
    body: UpdateStreamStatusRequest,
    employer_address: str = Path(..., pattern=ADDRESS_PATTERN),
    employee_address: str = Path(..., pattern=ADDRESS_PATTERN),
    caller: str = Depends(caller_wallet),
    controller: StreamController = Depends(get_controller),
) -> StreamResponse:
    """Pause or resume a stream."""
    require_owner(request, caller, employer_address)
    stream = controller.set_paused(employer_address, employee_address, body.paused)
    return StreamResponse(stream=stream)


@app.patch(
    "/api/streams/{employer_address}/{employee_address}/cancel",
    response_model=StreamResponse,
)
def cancel_stream(
    request: Request,
    body: CancelStreamRequest,
    employer_address: str = Path(..., pattern=ADDRESS_PATTERN),
    employee_address: str = Path(..., pattern=ADDRESS_PATTERN),
    caller: str = Depends(caller_wallet),
    controller: StreamController = Depends(get_controller),
) -> StreamResponse:
    """Cancel a stream."""
    require_owner(request, caller, employer_address)
    stream = controller.cancel_stream(
        employer_address, employee_address, body.cancellation_tx_hash
    )
    return StreamResponse(stream=stream)


@app.patch(
    "/api/streams/{employer_address}/{employee_address}/sync",
    response_model=StreamResponse,
)
def sync_stream(
    request: Request,
    body: SyncStreamRequest,
    employer_address: str = Path(..., pattern=ADDRESS_PATTERN),
    employee_address: str = Path(..., pattern=ADDRESS_PATTERN),
    caller: str = Depends(caller_wallet),
    controller: StreamController = Depends(get_controller),
) -> StreamResponse:
    """Apply an on-chain snapshot to a stream."""
    require_owner(request, caller, employer_address, employee_address)
    stream = controller.sync_stream(
        employer_address,
        employee_address,
        observed_withdrawn=body.withdrawn,
        observed_paused=body.paused,
    )
    return StreamResponse(stream=stream)


# ----------------------------------------------------------------------
# Employees
# ----------------------------------------------------------------------


@app.get("/api/employees/{employer_address}", response_model=EmployeeListResponse)
def list_employees(
    request: Request,
    employer_address: str = Path(..., pattern=ADDRESS_PATTERN),
    caller: str = Depends(caller_wallet),
    directory: EmployeeDirectory = Depends(get_directory),
) -> EmployeeListResponse:
    """Get the employees of an employer, most recently added first."""
    require_owner(request, caller, employer_address)
    employees = directory.list_employees(employer_address)
    return EmployeeListResponse(count=len(employees), employees=employees)


@app.post("/api/employees", response_model=EmployeeResponse, status_code=201)
def add_employee(
    request: Request,
    body: AddEmployeeRequest,
    caller: str = Depends(caller_wallet),
    directory: EmployeeDirectory = Depends(get_directory),
) -> EmployeeResponse:
    """
    Add a wallet to the caller's directory.

    Answers 409 with the existing record if the wallet is already listed.
    """
    require_owner(request, caller, body.employer_address)
    employee = directory.add_employee(body.employer_address, body.wallet_address, body.profile())
    return EmployeeResponse(employee=employee)


@app.post("/api/employees/bulk", response_model=BulkAddResponse)
def bulk_add_employees(
    request: Request,
    body: BulkAddEmployeesRequest,
    caller: str = Depends(caller_wallet),
    directory: EmployeeDirectory = Depends(get_directory),
) -> BulkAddResponse:
    """Add many wallets; the result lists added, skipped and failed entries."""
    require_owner(request, caller, body.employer_address)
    return BulkAddResponse(results=directory.bulk_add(body.employer_address, body.employees))


@app.patch("/api/employees/{employee_id}", response_model=EmployeeResponse)
def update_employee(
    request: Request,
    body: UpdateEmployeeRequest,
    employee_id: str = Path(..., max_length=100),
    caller: str = Depends(caller_wallet),
    directory: EmployeeDirectory = Depends(get_directory),
) -> EmployeeResponse:
    """Update employee metadata."""
    require_owner(request, caller, directory.get_employee(employee_id).employer_address)
    return EmployeeResponse(employee=directory.update_employee(employee_id, body))


@app.delete("/api/employees/{employee_id}", response_model=EmployeeDeletedResponse)
def delete_employee(
    request: Request,
    employee_id: str = Path(..., max_length=100),
    caller: str = Depends(caller_wallet),
    directory: EmployeeDirectory = Depends(get_directory),
) -> EmployeeDeletedResponse:
    """Delete an employee record."""
    require_owner(request, caller, directory.get_employee(employee_id).employer_address)
    directory.remove_employee(employee_id)
    return EmployeeDeletedResponse()


@app.delete(
    "/api/employees/address/{employer_address}/{wallet_address}",
    response_model=EmployeeDeletedResponse,
)
def delete_employee_by_wallet(
    request: Request,
    employer_address: str = Path(..., pattern=ADDRESS_PATTERN),
    wallet_address: str = Path(..., pattern=ADDRESS_PATTERN),
    caller: str = Depends(caller_wallet),
    directory: EmployeeDirectory = Depends(get_directory),
) -> EmployeeDeletedResponse:
    """Delete the record of a wallet from the caller's directory."""
    require_owner(request, caller, employer_address)
    directory.remove_by_wallet(employer_address, wallet_address)
    return EmployeeDeletedResponse()


# ----------------------------------------------------------------------
# Logs (admin only)
# ----------------------------------------------------------------------


def _split(value: Optional[str]) -> Optional[list[str]]:
    """Parse a comma-separated query parameter."""
    if value is None:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None


def _filter_params(**params: Any) -> dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


@app.get("/api/logs", response_model=LogQueryResponse)
def query_logs(
    level: Optional[str] = Query(None, description="Comma-separated levels"),
    category: Optional[str] = Query(None, description="Comma-separated categories"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    user_address: Optional[str] = Query(None),
    endpoint: Optional[str] = Query(None, description="Endpoint prefix"),
    search: Optional[str] = Query(None),
    tags: Optional[str] = Query(None, description="Comma-separated tags (match any)"),
    page: Optional[int] = Query(None),
    limit: Optional[int] = Query(None),
    sort_by: Optional[str] = Query(None),
    sort_order: Optional[str] = Query(None),
    _admin: str = Depends(admin_wallet),
    engine: LogQueryEngine = Depends(get_log_engine),
) -> LogQueryResponse:
    """Query logs with filtering, pagination and sorting."""
    result = engine.query(_filter_params(
        levels=_split(level),
        categories=_split(category),
        start_date=start_date,
        end_date=end_date,
        user_address=user_address,
        endpoint=endpoint,
        search=search,
        tags=_split(tags),
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    ))
    return LogQueryResponse(
        records=result.records,
        pagination=Pagination(
            total=result.total, page=result.page, limit=result.limit, pages=result.pages
        ),
    )


@app.get("/api/logs/stats", response_model=LogStatsResponse)
def log_stats(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    _admin: str = Depends(admin_wallet),
    engine: LogQueryEngine = Depends(get_log_engine),
) -> LogStatsResponse:
    """Get log statistics."""
    return LogStatsResponse(stats=engine.stats(start_date, end_date))


@app.get("/api/logs/export")
def export_logs(
    level: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    user_address: Optional[str] = Query(None),
    endpoint: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    tags: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    _admin: str = Depends(admin_wallet),
    engine: LogQueryEngine = Depends(get_log_engine),
) -> JSONResponse:
    """Export logs as a JSON file download."""
    records = engine.export(_filter_params(
        levels=_split(level),
        categories=_split(category),
        start_date=start_date,
        end_date=end_date,
        user_address=user_address,
        endpoint=endpoint,
        search=search,
        tags=_split(tags),
        limit=limit,
    ))
    filename = f"logs-{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}.json"
    return JSONResponse(
        content=[record.model_dump(mode="json") for record in records],
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@app.delete("/api/logs/cleanup", response_model=LogCleanupResponse)
def cleanup_logs(
    days_to_keep: Optional[int] = Query(None, description="Retention window in days"),
    _admin: str = Depends(admin_wallet),
    engine: LogQueryEngine = Depends(get_log_engine),
) -> LogCleanupResponse:
    """Delete logs older than ``days_to_keep`` days."""
    if days_to_keep is None:
        days_to_keep = config.retention_days if config else DEFAULT_DAYS_TO_KEEP
    deleted_count = engine.cleanup(days_to_keep)
    return LogCleanupResponse(
        deleted_count=deleted_count,
        message=f"Deleted {deleted_count} logs older than {days_to_keep} days",
    )


@app.get("/api/logs/levels")
def log_levels(_admin: str = Depends(admin_wallet)) -> dict:
    """Available log levels."""
    return {"success": True, "levels": [level.value for level in LogLevel]}


@app.get("/api/logs/categories")
def log_categories(_admin: str = Depends(admin_wallet)) -> dict:
    """Available log categories."""
    return {"success": True, "categories": [category.value for category in LogCategory]}
