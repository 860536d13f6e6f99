"""
Pydantic schemas for the actuator responses.

Field aliases keep the camelCase JSON keys of the actuator endpoints.
"""

from typing import Optional, List, Dict
from pydantic import BaseModel, Field


class ApiStatsResponse(BaseModel):
    """Aggregated stats for one endpoint; durations in seconds."""
    count: int = Field(..., ge=0, description="Requests observed")
    avg: float = Field(..., ge=0, description="Average duration in seconds")
    max: float = Field(..., ge=0, description="Maximum duration in seconds")


class SystemHealthResponse(BaseModel):
    """Current system signals; a field is null when its read failed."""
    cpu_usage_percent: Optional[float] = Field(None, alias="cpuUsagePercent")
    heap_used_mb: Optional[float] = Field(None, alias="heapUsedMB")
    heap_max_mb: Optional[float] = Field(None, alias="heapMaxMB")
    heap_usage_percent: Optional[float] = Field(None, alias="heapUsagePercent")
    live_threads: Optional[int] = Field(None, alias="liveThreads")
    gc_pause_millis: Optional[float] = Field(None, alias="gcPauseMillis")


class DependencyCheckResponse(BaseModel):
    """Result of one dependency check."""
    name: str
    kind: str
    available: bool
    detail: str = Field(..., description="Available or Unavailable")
    duration_ms: float
    timestamp: str
    error: Optional[str] = None


class DependencyHealthResponse(BaseModel):
    """Aggregate dependency health."""
    status: str = Field(..., description="UP when every dependency is available, else DOWN")
    timestamp: str
    details: Dict[str, str]
    checks: List[DependencyCheckResponse]


TrendResponse = Dict[str, List[float]]
ApiLoadResponse = Dict[str, ApiStatsResponse]
