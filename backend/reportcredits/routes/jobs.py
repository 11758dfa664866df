"""Analysis Job Routes

Endpoints:
- POST /api/analysis-jobs - Create a paid analysis report (multipart upload)
- GET /api/analysis-jobs - List my jobs
- GET /api/analysis-jobs/{job_id} - Get one job
"""

from fastapi import APIRouter, HTTPException, Depends, Query, UploadFile, File, Form
from fastapi.responses import JSONResponse
from typing import List, Optional
from pathlib import Path
import logging
import os
import re
import uuid

from reportcredits.bootstrap import ReportCreditServices
from reportcredits.errors import (
    HandlerNotRegistered,
    PricingNotFound,
    ReservationPersistenceFailure,
)
from reportcredits.models.jobs import (
    AnalysisJob,
    AnalysisJobType,
    CreateJobRequest,
    CreateJobResult,
    JobListResponse,
    JobStatus,
    VehicleInfo,
)
from reportcredits.routes.deps import get_current_user_id, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analysis-jobs", tags=["Analysis Jobs"])

# Upload storage directory (configurable via DATA_DIR or ANALYSIS_UPLOAD_PATH)
DATA_DIR = os.getenv("DATA_DIR", "/tmp")
ANALYSIS_UPLOAD_PATH = Path(os.environ.get("ANALYSIS_UPLOAD_PATH", str(Path(DATA_DIR) / "data" / "analysis_uploads")))
MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)))

_SAFE_SUFFIX = re.compile(r"^\.[A-Za-z0-9]{1,8}$")
_UNSAFE_DIR_CHARS = re.compile(r"[^A-Za-z0-9_-]")


async def _save_upload(upload: UploadFile, user_id: str) -> Path:
    """Store an uploaded file under the upload directory with a generated name."""
    contents = await upload.read()
    if len(contents) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"{upload.filename} exceeds {MAX_UPLOAD_BYTES} bytes")

    suffix = Path(upload.filename or "").suffix
    if not _SAFE_SUFFIX.match(suffix):
        suffix = ""
    file_path = ANALYSIS_UPLOAD_PATH / _UNSAFE_DIR_CHARS.sub("_", user_id) / f"{uuid.uuid4()}{suffix.lower()}"
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, "wb") as f:
        f.write(contents)
    return file_path


def _discard(paths: List[Path]) -> None:
    for path in paths:
        path.unlink(missing_ok=True)


@router.post("", response_model=CreateJobResult)
async def create_job(
    job_type: AnalysisJobType = Form(...),
    plate: Optional[str] = Form(None),
    brand: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    year: Optional[int] = Form(None),
    color: Optional[str] = Form(None),
    mileage: Optional[int] = Form(None),
    notes: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    audio: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    services: ReportCreditServices = Depends(get_services),
):
    """Create and run an analysis report.

    Media is only ever read from files uploaded with this request. Returns
    402 when credits are insufficient. A failed analysis returns 200 with
    success=false and says whether the credits were returned.
    """
    saved: List[Path] = []
    image_path = audio_path = None
    try:
        if image is not None:
            image_path = await _save_upload(image, user_id)
            saved.append(image_path)
        if audio is not None:
            audio_path = await _save_upload(audio, user_id)
            saved.append(audio_path)
    except HTTPException:
        _discard(saved)
        raise

    request = CreateJobRequest(
        user_id=user_id,
        job_type=job_type,
        vehicle=VehicleInfo(plate=plate, brand=brand, model=model, year=year, color=color, mileage=mileage),
        image_path=str(image_path) if image_path else None,
        audio_path=str(audio_path) if audio_path else None,
        notes=notes,
    )
    try:
        result = await services.orchestrator.create_job(request)
    except (PricingNotFound, HandlerNotRegistered) as e:
        _discard(saved)
        raise HTTPException(status_code=400, detail=str(e))
    except ReservationPersistenceFailure as e:
        _discard(saved)
        logger.error(f"Reservation store unavailable: {e}")
        raise HTTPException(status_code=503, detail="Credit service temporarily unavailable")

    if not result.success and result.refund_status is None:
        # Declined reservation: nothing was charged and no job was kept
        _discard(saved)
        return JSONResponse(status_code=402, content=result.model_dump(mode="json"))
    return result


@router.get("", response_model=JobListResponse)
async def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    status: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    services: ReportCreditServices = Depends(get_services),
):
    job_status = None
    if status:
        try:
            job_status = JobStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid job status: {status}")

    jobs = await services.orchestrator.list_jobs(user_id, limit=limit, offset=offset, status=job_status)
    return JobListResponse(jobs=jobs, limit=limit, offset=offset)


@router.get("/{job_id}", response_model=AnalysisJob)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ReportCreditServices = Depends(get_services),
):
    job = await services.orchestrator.get_job(user_id, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
