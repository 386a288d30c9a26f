from fastapi import APIRouter, Depends
from app.modules.performance import metrics_registry
from app.modules.performance.schemas import PerformanceMetricsSnapshot
from app.core.dependencies import require_permission, require_super_user
from typing import Dict

router = APIRouter(prefix="/performance", tags=["performance"])


@router.get("/metrics", response_model=PerformanceMetricsSnapshot)
async def get_performance_metrics(
    user_data: Dict = Depends(require_permission("performance:read"))
):
    """Request latency and error counts per route since startup or last reset"""
    return metrics_registry.snapshot()


@router.post("/metrics/reset", status_code=204)
async def reset_performance_metrics(
    user_data: Dict = Depends(require_super_user)
):
    metrics_registry.reset()
    return None
