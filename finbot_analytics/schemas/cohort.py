from enum import Enum
from datetime import date, datetime
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import BaseModel, Field, field_validator, model_validator


class AnchorType(str, Enum):
    """What counts as a user's entry into a cohort"""
    ACQUISITION = "acquisition"
    ACTIVATION = "activation"
    BILLING = "billing"
    TRIAL = "trial"


class ActiveDefinition(str, Enum):
    """What counts as activity inside a retention window"""
    ENTRIES_ONLY = "entries_only"
    MINIAPP_ONLY = "miniapp_only"
    ENTRIES_OR_MINIAPP = "entries_or_miniapp"
    ENTRIES_AND_MINIAPP = "entries_and_miniapp"

    @property
    def needs_entries(self) -> bool:
        return self is not ActiveDefinition.MINIAPP_ONLY

    @property
    def needs_miniapp(self) -> bool:
        return self is not ActiveDefinition.ENTRIES_ONLY


class Bucket(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class CohortQueryParams(BaseModel):
    """Validated parameters for a cohort retention request"""
    anchor: AnchorType = AnchorType.ACTIVATION
    active_definition: ActiveDefinition = ActiveDefinition.ENTRIES_OR_MINIAPP
    bucket: Bucket = Bucket.WEEKLY
    windows: int = Field(default=12, ge=1, le=52)
    limit: Optional[int] = Field(default=None, ge=1, le=104)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    timezone: str
    include_users: bool = False

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f'Unknown timezone: {v}')
        return v

    @model_validator(mode='after')
    def validate_date_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("'start_date' must be before or equal to 'end_date'")
        return self


class CohortRowResponse(BaseModel):
    """One cohort and its retention by window"""
    cohort_key: str
    cohort_date: datetime
    cohort_size: int
    windows: Dict[str, float]
    absolute: Dict[str, int]
    users: Optional[List[int]] = None


class CohortRetentionResponse(BaseModel):
    """Cohort retention response"""
    ok: bool = True
    no_data: bool
    rows: List[CohortRowResponse]
    total_user_count: int
    per_window_average: Dict[str, float]
    best_cohort_key: Optional[str]
