import time
from app.modules.performance import metrics_registry

UNMATCHED_ROUTE = "<unmatched>"


class RequestMetricsMiddleware:
    """ASGI middleware timing each HTTP request into metrics_registry, keyed by route template."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_holder = {"status": 500}

        async def send_with_status(message):
            if message["type"] == "http.response.start":
                status_holder["status"] = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_with_status)
        finally:
            # The router stores the matched route on the shared scope
            route = scope.get("route")
            path = getattr(route, "path", None) or UNMATCHED_ROUTE
            metrics_registry.record(
                f"{scope.get('method', 'GET')} {path}",
                (time.perf_counter() - start) * 1000,
                status_holder["status"],
            )
