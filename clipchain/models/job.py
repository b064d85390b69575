"""
Job Data Models
Represents a queued background video generation
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime
import uuid


class JobStatus(str, Enum):
    """Background generation status"""
    PENDING = "pending"
    GENERATING = "generating"
    STITCHING = "stitching"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationJob(BaseModel):
    """Complete job model with request payload and result"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    status: JobStatus = JobStatus.PENDING
    progress: float = Field(default=0.0, ge=0, le=100)
    request: Dict[str, Any] = Field(default_factory=dict)
    clip_count: int = 1
    operation_names: List[str] = Field(default_factory=list)
    video_url: Optional[str] = None
    transition: Optional[str] = None
    credits_used: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}
