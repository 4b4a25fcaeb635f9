"""
Settings Schemas
Pydantic models for user preferences
"""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict

from models import Channel, TimeFormat


class SettingsUpdate(BaseModel):
    """Schema for updating settings; only the fields sent are applied"""
    timezone: Optional[str] = None
    time_format: Optional[TimeFormat] = None
    default_channels: Optional[List[Channel]] = None


class SettingsResponse(BaseModel):
    """Schema for settings response"""
    user_id: int
    timezone: str
    time_format: TimeFormat
    default_channels: List[Channel]

    model_config = ConfigDict(from_attributes=True)
