"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum


class OutcomeStatusEnum(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class CheckStatusEnum(str, Enum):
    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"


class SampleStrategyEnum(str, Enum):
    SEQUENTIAL = "sequential"
    RANDOM = "random"


# Request Models
class ScoreRequest(BaseModel):
    sample_size: int = Field(default=20, ge=0)
    sample_strategy: SampleStrategyEnum = SampleStrategyEnum.SEQUENTIAL
    per_category_sample: Optional[int] = Field(default=10, ge=0)
    persist: bool = False


# Response Models
class CheckpointSummary(BaseModel):
    key: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CheckpointListResponse(BaseModel):
    checkpoints: List[CheckpointSummary]
    total: int


class CheckpointResponse(BaseModel):
    key: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    payload: Any = None


class ValidationCheckResponse(BaseModel):
    name: str
    status: CheckStatusEnum
    message: str
    score: float
    max_score: float
    details: Dict[str, Any] = Field(default_factory=dict)


class ReadinessResponse(BaseModel):
    validated_at: str
    migration_status: OutcomeStatusEnum
    overall_score: int
    summary: Dict[str, Any] = Field(default_factory=dict)
    validation_checks: List[ValidationCheckResponse] = Field(default_factory=list)
    storage_validation: Dict[str, Any] = Field(default_factory=dict)
    database_validation: Dict[str, Any] = Field(default_factory=dict)
    business_logic_validation: Dict[str, Any] = Field(default_factory=dict)
    compression_benefits: Dict[str, Any] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)
    rollback_information: Dict[str, Any] = Field(default_factory=dict)
