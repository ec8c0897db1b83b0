"""
Conversion routes: one POST endpoint per operation kind plus self-description.
"""

import logging
import uuid
from typing import Dict, List

from fastapi import APIRouter, HTTPException, Request, Response
from starlette.datastructures import UploadFile

from ...errors import ConfigurationError, ValidationError
from ...jobs import get_job_manager
from ...models import JobStatusResponse, OperationInfo, OperationsResponse
from ...transcoding import OPERATIONS, SourceFile, TranscodeRequest, get_operation

logger = logging.getLogger(__name__)

router = APIRouter()


def _lookup(operation: str):
    try:
        return get_operation(operation)
    except ConfigurationError:
        raise HTTPException(status_code=404, detail=f"Unknown operation: {operation}")


@router.get("/api/operations", response_model=OperationsResponse)
async def list_operations():
    """Describe every supported operation."""
    return OperationsResponse(
        operations=[OperationInfo(**spec.to_dict()) for spec in OPERATIONS.values()]
    )


@router.get("/api/jobs/{job_id}", response_model=JobStatusResponse)
async def job_status(job_id: str):
    """Status of a recent job."""
    job = get_job_manager().get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobStatusResponse(**job.to_dict())


@router.get("/api/{operation}", response_model=OperationInfo)
async def describe_operation(operation: str):
    """Accepted inputs and option domains of one operation."""
    return OperationInfo(**_lookup(operation).to_dict())


@router.post("/api/{operation}")
async def convert(operation: str, request: Request):
    """
    Convert the uploaded file(s).

    Multipart fields: `file` (or repeated `files` for image sequences) plus
    string option fields. Responds with the converted bytes.
    """
    spec = _lookup(operation)
    form = await request.form()

    uploads: List[UploadFile] = [v for v in form.getlist("files") if isinstance(v, UploadFile)]
    single = form.get("file")
    if not uploads and isinstance(single, UploadFile):
        uploads = [single]
    if not uploads:
        raise ValidationError("No file provided")

    sources = []
    for upload in uploads:
        data = await upload.read()
        sources.append(SourceFile(
            filename=upload.filename or "",
            data=data,
            content_type=upload.content_type or "",
        ))

    options: Dict[str, str] = {
        key: value for key, value in form.multi_items() if isinstance(value, str)
    }
    job_id = uuid.uuid4().hex[:12]
    logger.info(
        f"[Convert] Job {job_id}: {spec.kind.value} on {len(sources)} file(s), "
        f"{sum(s.size for s in sources)} bytes"
    )

    result = await get_job_manager().submit(
        TranscodeRequest(operation=spec.kind.value, sources=tuple(sources), options=options),
        job_id=job_id,
    )

    return Response(
        content=result.data,
        media_type=result.mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "X-Original-Size": str(result.original_size),
            "X-Output-Size": str(result.output_size),
            "X-Job-Id": job_id,
        },
    )
