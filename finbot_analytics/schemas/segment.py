from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator


class SegmentOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    IN = "in"
    NOT_IN = "not_in"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BETWEEN = "between"
    BEFORE = "before"
    AFTER = "after"
    WITHIN_DAYS = "within_days"
    IS_NULL = "is_null"
    NOT_NULL = "not_null"


class SegmentLogic(str, Enum):
    AND = "and"
    OR = "or"


class SegmentFilter(BaseModel):
    """One audience filter: `table.column` + operator + value"""

    field: str = Field(..., min_length=3, max_length=255)
    op: SegmentOperator
    value: Any = None

    @field_validator('field')
    @classmethod
    def validate_field_format(cls, v: str) -> str:
        v = v.strip()
        if '.' not in v:
            raise ValueError("Field must look like 'table.column'")
        return v


class SegmentPreviewRequest(BaseModel):
    filters: List[SegmentFilter] = Field(default_factory=list, max_length=50)
    logic: SegmentLogic = SegmentLogic.AND
    sample_size: Optional[int] = Field(default=None, ge=1, le=50)


class UserSummary(BaseModel):
    id: int
    username: Optional[str] = None
    display_name: Optional[str] = None
    language: Optional[str] = None

    model_config = {"from_attributes": True}


class SegmentPreviewResponse(BaseModel):
    ok: bool = True
    segment_applied: bool
    count: int
    sample: List[UserSummary]


class BroadcastRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=4096)
    parse_mode: Optional[str] = None
    filters: List[SegmentFilter] = Field(default_factory=list, max_length=50)
    logic: SegmentLogic = SegmentLogic.AND

    @field_validator('text')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Text cannot be empty or whitespace')
        return v


class BroadcastResponse(BaseModel):
    ok: bool = True
    segment_applied: bool
    recipients: Optional[int]
    queued: bool
    detail: Dict[str, Any] = Field(default_factory=dict)


class FieldDescriptor(BaseModel):
    group: str
    field: str
    label: str
    type: str


class FilterMetadataResponse(BaseModel):
    ok: bool = True
    fields: List[FieldDescriptor]
    operators: Dict[str, List[str]]
    options: Dict[str, List[Dict[str, Any]]]
