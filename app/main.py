import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.core.limiter import limiter
from app.core.middleware import SecurityHeadersMiddleware
from app.modules.auth import routes as auth_routes
from app.modules.webhooks import routes as webhooks_routes
from app.modules.workflows import routes as workflows_routes
from app.modules.executions import routes as executions_routes
from app.modules.monitoring import routes as monitoring_routes
from app.modules.performance import routes as performance_routes
from app.modules.performance.middleware import RequestMetricsMiddleware

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

# Monitoring before workflows: both live under /workflows
ROUTERS = [
    auth_routes.router,
    webhooks_routes.router,
    monitoring_routes.router,
    workflows_routes.router,
    executions_routes.router,
    performance_routes.router,
]

app = FastAPI(
    title=settings.app_name,
    description="Webhook orchestration and workflow execution monitoring for n8n",
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Strong references to long-running tasks started at startup
_background_tasks: set = set()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    detail = "Internal server error" if settings.is_production else str(exc)
    return JSONResponse(status_code=500, content={"detail": detail})


# Last added runs first: CORS, request metrics, security headers
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestMetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in ROUTERS:
    app.include_router(router, prefix=API_PREFIX)


@app.on_event("startup")
async def startup_event():
    logger.info(f"{settings.app_name} starting ({settings.environment})")
    if not settings.webhook_secret:
        logger.warning("WEBHOOK_SECRET is not set; n8n webhook signatures are not verified")

    if settings.retry_scheduler_enabled:
        from app.modules.webhooks.retry_scheduler import retry_scheduler_loop
        task = asyncio.create_task(retry_scheduler_loop())
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        logger.info(f"Webhook retry scheduler started - checking every {settings.retry_scheduler_interval}s")


@app.on_event("shutdown")
async def shutdown_event():
    for task in list(_background_tasks):
        task.cancel()
    if _background_tasks:
        await asyncio.gather(*_background_tasks, return_exceptions=True)
    logger.info(f"{settings.app_name} stopped")


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.app_name}", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness probe"""
    return {"status": "ready", "environment": settings.environment}
