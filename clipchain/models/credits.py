"""
Credit Ledger Models
Balances, transaction history and generated-video records
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import uuid

from pydantic import BaseModel, Field


class CreditBalance(BaseModel):
    user_id: str
    total_credits: int = 0
    used_credits: int = 0
    remaining_credits: int = 0


class CreditTransaction(BaseModel):
    """One row per chargeable action"""
    id: Optional[int] = None
    user_id: str
    action_type: str
    credits_used: int
    model_used: Optional[str] = None
    duration: Optional[float] = None
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)


class VideoRecord(BaseModel):
    """History row for a delivered video"""
    id: Optional[int] = None
    user_id: str
    prompt: str = ""
    enhanced_prompt: Optional[str] = None
    video_url: str
    model: str
    mode: str = "text-to-video"
    duration: float = 0
    clip_count: int = 1
    transition: Optional[str] = None
    credits_used: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


@dataclass
class ChargeDetails:
    """What a commit writes alongside the balance decrement"""
    action_type: str
    description: str
    model_used: Optional[str] = None
    duration: Optional[float] = None
    video: Optional[VideoRecord] = None


@dataclass
class ReservationToken:
    """An in-memory hold on part of a user's balance"""
    user_id: str
    credits: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=datetime.utcnow)
    committed: bool = False
    released: bool = False

    @property
    def settled(self) -> bool:
        return self.committed or self.released


class AddCreditsRequest(BaseModel):
    amount: int = Field(..., gt=0, le=1_000_000)
