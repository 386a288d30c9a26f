from pydantic import BaseModel
from typing import Dict


class RouteMetrics(BaseModel):
    count: int
    errors: int
    avg_ms: float
    p95_ms: float
    max_ms: float


class PerformanceMetricsSnapshot(BaseModel):
    uptime_seconds: float
    total_requests: int
    total_errors: int
    routes: Dict[str, RouteMetrics]
