from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class TranscriptEntry(BaseModel):
    speaker: str
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TranscriptCreate(BaseModel):
    text: str
    speaker: Optional[str] = None
