"""
Videos Router
Chained generation, async submission, status polling, combining and
single-clip regeneration.
"""

import json
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..models.credits import VideoRecord
from ..models.generation import (
    CombineRequest,
    CombineResponse,
    GenerationRequest,
    GenerationResponse,
    RegenerateClipRequest,
    StatusSummary,
)
from ..services.credit_ledger import CreditLedger, get_credit_ledger
from ..services.video_pipeline import VideoPipeline, get_video_pipeline
from ..utils.exceptions import ValidationError
from ..utils.logger import get_logger
from .dependencies import get_user_id

router = APIRouter(prefix="/api/videos", tags=["videos"])
logger = get_logger()


def parse_operation_names(operation_name: Optional[str], operation_names: Optional[str]) -> List[str]:
    """Accept a single name or a JSON-encoded list of names"""
    if operation_names:
        try:
            names = json.loads(operation_names)
        except ValueError as exc:
            raise ValidationError("operationNames must be a JSON array", field="operationNames") from exc
        if not isinstance(names, list) or not all(isinstance(n, str) and n for n in names):
            raise ValidationError("operationNames must be a JSON array of strings", field="operationNames")
        return names
    if operation_name:
        return [operation_name]
    raise ValidationError("operationName or operationNames is required", field="operationName")


@router.post("/generate", response_model=GenerationResponse)
async def generate_video(
    request: GenerationRequest,
    user_id: str = Depends(get_user_id),
    pipeline: VideoPipeline = Depends(get_video_pipeline),
):
    """Generate, chain, stitch and host a video in one call."""
    logger.info(f"Chained generation requested by {user_id} ({request.input_type.value}, {request.duration}s)")
    return await pipeline.generate(user_id, request)


@router.post("/generate/async", response_model=GenerationResponse)
async def submit_video(
    request: GenerationRequest,
    user_id: str = Depends(get_user_id),
    pipeline: VideoPipeline = Depends(get_video_pipeline),
):
    """Submit every clip and return operation names to poll."""
    return await pipeline.submit_async(user_id, request)


@router.get("/status", response_model=StatusSummary)
async def check_status(
    operation_name: Optional[str] = Query(None, alias="operationName"),
    operation_names: Optional[str] = Query(None, alias="operationNames"),
    user_id: str = Depends(get_user_id),
    pipeline: VideoPipeline = Depends(get_video_pipeline),
):
    names = parse_operation_names(operation_name, operation_names)
    return await pipeline.check_status(names)


@router.post("/combine", response_model=CombineResponse)
async def combine_videos(
    request: CombineRequest,
    user_id: str = Depends(get_user_id),
    pipeline: VideoPipeline = Depends(get_video_pipeline),
):
    """Crossfade already-complete clips into one hosted video."""
    return await pipeline.combine(user_id, request)


@router.post("/regenerate-clip", response_model=GenerationResponse)
async def regenerate_clip(
    request: RegenerateClipRequest,
    user_id: str = Depends(get_user_id),
    pipeline: VideoPipeline = Depends(get_video_pipeline),
):
    return await pipeline.regenerate_clip(user_id, request)


@router.get("/history", response_model=List[VideoRecord])
async def video_history(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_user_id),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    return await ledger.list_videos(user_id, limit)
