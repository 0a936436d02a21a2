from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ReplyCreateRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


class ReplyResponse(BaseModel):
    id: int
    ticket_id: int
    author_user_id: int
    message: str
    created_at: Optional[datetime] = None
    tracker_sync: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
