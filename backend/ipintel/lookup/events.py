from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LookupEvent(BaseModel):
    event_type: str
    ip: str
    timestamp: datetime = Field(default_factory=_now)


class CompletionNotice(LookupEvent):
    """One provider finished (either way). Emitted in real completion order."""

    event_type: Literal["provider.completed"] = "provider.completed"
    provider: str
    success: bool
    completed: int
    total: int
    error: str | None = None


class LookupProgress(LookupEvent):
    """What a streaming consumer reports to its client: k of n providers done."""

    event_type: Literal["lookup.progress"] = "lookup.progress"
    provider: str
    success: bool
    completed: int
    total: int
