"""
Common Schemas
Shared response fields
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from tools.tz_utils import ensure_utc


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC; responses carry the offset"""
    return ensure_utc(value) if value is not None else None


class GenerateDosesResponse(BaseModel):
    """Counts from one materialization run"""
    requested: int = 0
    generated: int = 0
    skipped: int = 0
    errors: List[str] = []


class JobResultResponse(BaseModel):
    """Outcome of one periodic job"""
    job: str
    success: bool
    total: int
    results: List[Dict[str, Any]]
    errors: List[Dict[str, Any]]
    unconfigured: int
    timestamp: datetime
