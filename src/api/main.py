"""
WasteWatch - REST API

FastAPI application for citizen waste reports and the supervisor
workflow that resolves them.

Run with: uvicorn src.api.main:app --reload
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.core.config import settings
from src.core.constants import DEFAULT_PAGE_SIZE
from src.core.errors import AuthenticationError, ErrorCode, PermissionDenied, WasteWatchError
from src.core.logging import setup_logging
from src.crowdsource.models import User
from src.crowdsource.report_handler import ReportHandler
from src.crowdsource.validation import ReportSubmission, SubmissionValidator
from src.database.repository import InMemoryReportRepository, InMemoryUserRepository
from src.ml.verdict_cache import FingerprintCache
from src.ml.waste_classifier import WasteClassifier
from src.storage.cloudinary_storage import CloudinaryStorage
from src.storage.object_storage import UnconfiguredStorage, UploadOptions
from src.storage.uploader import BoundedUploader

VERSION = "1.0.0"

setup_logging()
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="WasteWatch",
    description="Crowdsourced waste reporting with AI photo verification",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WasteWatchError)
async def wastewatch_error_handler(request: Request, exc: WasteWatchError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    error = WasteWatchError(
        ErrorCode.VALIDATION_ERROR, "Invalid request", details={"errors": errors}, status_code=400
    )
    return JSONResponse(status_code=400, content={"error": error.to_dict()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"{request.method} {request.url.path} failed: {exc}")
    error = WasteWatchError(ErrorCode.INTERNAL_SERVER_ERROR, "Internal server error")
    return JSONResponse(status_code=500, content={"error": error.to_dict()})


# ============================================================================
# Pydantic Models
# ============================================================================

# Coordinates stay untyped so the validator reports non-numeric values
Coordinate = Any


class ReportCreateRequest(BaseModel):
    """Request to submit a waste report. Presence is checked by the validator."""
    title: Optional[str] = None
    image: Optional[str] = Field(default=None, description="Base64 image, data URL prefix optional")
    details: Optional[str] = None
    address: Optional[str] = None
    latitude: Coordinate = None
    longitude: Coordinate = None
    photo_timestamp: Optional[str] = None
    category: Optional[str] = Field(default=None, description="standard, hazardous or large")
    force_submit: bool = False


class ClassifyRequest(BaseModel):
    image: Optional[str] = None


class AssignRequest(BaseModel):
    assignee_id: Optional[str] = None
    message: Optional[str] = None


class ResolveRequest(BaseModel):
    """Cleanup evidence for a resolved report."""
    image: Optional[str] = None
    latitude: Coordinate = None
    longitude: Coordinate = None
    address: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str
    assignee_id: Optional[str] = None
    message: Optional[str] = None
    reason: Optional[str] = None


class HealthResponse(BaseModel):
    """API health check response."""
    status: str
    version: str
    timestamp: str
    modules: dict


# ============================================================================
# Dependencies
# ============================================================================

def build_report_handler() -> ReportHandler:
    """Wire the report handler from settings."""
    if settings.database_url:
        from src.database.connection import init_db
        from src.database.sql_repository import SqlReportRepository, SqlUserRepository

        db = init_db(settings.database_url)
        reports, users = SqlReportRepository(db), SqlUserRepository(db)
    else:
        logger.warning("DATABASE_URL not set, reports are kept in memory")
        reports, users = InMemoryReportRepository(), InMemoryUserRepository()

    if settings.cloudinary_configured:
        storage = CloudinaryStorage(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
        )
    else:
        logger.warning("Cloudinary credentials not set, image uploads will fail")
        storage = UnconfiguredStorage()

    if not settings.detector_api_key:
        logger.warning("DETECTOR_API_KEY not set, waste verification is unavailable")

    classifier = WasteClassifier(
        api_key=settings.detector_api_key,
        endpoint=settings.detector_url,
        model_url=settings.detector_model_url,
        timeout=settings.classification_timeout_seconds,
        cache=FingerprintCache(ttl_seconds=settings.verdict_cache_ttl_seconds),
        executor=ThreadPoolExecutor(
            max_workers=settings.classification_workers, thread_name_prefix="classifier"
        ),
    )
    uploader = BoundedUploader(
        storage,
        options=UploadOptions(
            folder=settings.upload_folder,
            format=settings.upload_format,
            max_width=settings.upload_max_width,
        ),
        timeout=settings.upload_timeout_seconds,
        executor=ThreadPoolExecutor(
            max_workers=settings.upload_workers, thread_name_prefix="upload"
        ),
    )

    return ReportHandler(
        reports=reports,
        users=users,
        classifier=classifier,
        uploader=uploader,
        validator=SubmissionValidator(max_image_bytes=settings.max_image_bytes),
    )


@lru_cache()
def get_report_handler() -> ReportHandler:
    return build_report_handler()


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    handler: ReportHandler = Depends(get_report_handler)
) -> User:
    """Resolve the caller from the X-User-Id header set by the auth gateway."""
    if not x_user_id:
        raise AuthenticationError(ErrorCode.UNAUTHENTICATED, "Authentication required")

    user = handler.users.get(x_user_id)
    if user is None:
        raise AuthenticationError(ErrorCode.UNAUTHENTICATED, "Unknown user")
    return user


def require_supervisor(user: User = Depends(get_current_user)) -> User:
    if not user.is_supervisor:
        raise PermissionDenied(ErrorCode.FORBIDDEN, "Supervisor role required")
    return user


# ============================================================================
# System Routes
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
def health_check():
    """Check API health status and configured integrations."""
    modules = {
        "classifier": bool(settings.detector_api_key),
        "storage": settings.cloudinary_configured,
        "database": "postgresql" if settings.database_url else "memory",
    }

    return HealthResponse(
        status="healthy",
        version=VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        modules=modules,
    )


# ============================================================================
# Citizen Routes
# ============================================================================

@app.post("/api/v1/reports", status_code=201, tags=["Reports"])
def create_report(
    request: ReportCreateRequest,
    user: User = Depends(get_current_user),
    handler: ReportHandler = Depends(get_report_handler)
):
    """
    Submit a waste report.

    The photo is verified by the waste detector unless force_submit is set,
    then uploaded and stored as a pending report.
    """
    result = handler.submit(user, ReportSubmission(**request.model_dump()))
    return {"success": True, **result.to_dict()}


@app.post("/api/v1/reports/classify", tags=["Reports"])
def classify_image(
    request: ClassifyRequest,
    user: User = Depends(get_current_user),
    handler: ReportHandler = Depends(get_report_handler)
):
    """Classify a photo without creating a report."""
    verdict = handler.classify_image(request.image)
    return {"success": True, "classification": verdict.to_dict()}


@app.get("/api/v1/reports", tags=["Reports"])
def list_reports(
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(get_current_user),
    handler: ReportHandler = Depends(get_report_handler)
):
    return handler.list_reports(page=page, limit=limit).to_dict()


@app.get("/api/v1/reports/mine", tags=["Reports"])
def list_my_reports(
    user: User = Depends(get_current_user),
    handler: ReportHandler = Depends(get_report_handler)
):
    reports = handler.list_user_reports(user)
    return {"count": len(reports), "reports": [r.to_dict() for r in reports]}


@app.get("/api/v1/reports/nearby", tags=["Reports"])
def list_nearby_reports(
    latitude: str = Query(..., description="Latitude"),
    longitude: str = Query(..., description="Longitude"),
    max_distance: Optional[float] = Query(None, description="Radius in meters"),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(get_current_user),
    handler: ReportHandler = Depends(get_report_handler)
):
    reports = handler.find_nearby(latitude, longitude, max_distance_m=max_distance, limit=limit)
    return {"count": len(reports), "reports": [r.to_dict() for r in reports]}


@app.delete("/api/v1/reports/{report_id}", tags=["Reports"])
def delete_report(
    report_id: str,
    user: User = Depends(get_current_user),
    handler: ReportHandler = Depends(get_report_handler)
):
    report = handler.delete_report(user, report_id)
    return {"success": True, "deleted": report.id, "points_deducted": report.points}


# ============================================================================
# Supervisor Routes
# ============================================================================

@app.get("/api/v1/supervisor/reports/pending", tags=["Supervisor"])
def list_pending_reports(
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    return handler.list_pending(user, page=page, limit=limit).to_dict()


@app.get("/api/v1/supervisor/reports/in-progress", tags=["Supervisor"])
def list_in_progress_reports(
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    return handler.list_in_progress(user, page=page, limit=limit).to_dict()


@app.get("/api/v1/supervisor/reports/resolved", tags=["Supervisor"])
def list_resolved_reports(
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    return handler.list_resolved(user, page=page, limit=limit).to_dict()


@app.get("/api/v1/supervisor/reports/resolved/{report_id}", tags=["Supervisor"])
def get_resolved_report(
    report_id: str,
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    return handler.get_resolved_report(user, report_id).to_dict()


@app.put("/api/v1/supervisor/reports/{report_id}/status", tags=["Supervisor"])
def update_report_status(
    report_id: str,
    request: StatusUpdateRequest,
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    report = handler.update_status(
        user,
        report_id,
        request.status,
        assignee_id=request.assignee_id,
        message=request.message,
        reason=request.reason,
    )
    return {"success": True, "report": report.to_dict()}


@app.put("/api/v1/supervisor/reports/{report_id}/assign", tags=["Supervisor"])
def assign_report(
    report_id: str,
    request: AssignRequest,
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    report = handler.assign(user, report_id, assignee_id=request.assignee_id, message=request.message)
    return {"success": True, "report": report.to_dict()}


@app.put("/api/v1/supervisor/reports/{report_id}/resolve", tags=["Supervisor"])
def resolve_report(
    report_id: str,
    request: ResolveRequest,
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    report = handler.resolve(
        user,
        report_id,
        image=request.image,
        latitude=request.latitude,
        longitude=request.longitude,
        address=request.address,
    )
    return {"success": True, "report": report.to_dict()}


@app.put("/api/v1/supervisor/reports/{report_id}/reject", tags=["Supervisor"])
def reject_report(
    report_id: str,
    request: ReasonRequest,
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    report = handler.reject(user, report_id, request.reason)
    return {"success": True, "report": report.to_dict()}


@app.put("/api/v1/supervisor/reports/{report_id}/out-of-scope", tags=["Supervisor"])
def mark_report_out_of_scope(
    report_id: str,
    request: ReasonRequest,
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    report = handler.mark_out_of_scope(user, report_id, request.reason)
    return {"success": True, "report": report.to_dict()}


@app.put("/api/v1/supervisor/reports/{report_id}/permanent-resolve", tags=["Supervisor"])
def permanently_resolve_report(
    report_id: str,
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    report = handler.permanently_resolve(user, report_id)
    return {"success": True, "report": report.to_dict()}


@app.get("/api/v1/supervisor/profile", tags=["Supervisor"])
def supervisor_profile(
    user: User = Depends(require_supervisor),
    handler: ReportHandler = Depends(get_report_handler)
):
    return handler.supervisor_profile(user)


# ============================================================================
# Main
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
