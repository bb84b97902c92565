"""FastAPI dependency injection — exposes lifespan-built services to routes.

Long-lived collaborators (HTTP client, log store, metrics worker) are built
once in the lifespan and parked on ``app.state``; request-scoped services are
assembled from them here.
"""

from fastapi import Request

from tap_proxy.application.interfaces.log_store import LogStore
from tap_proxy.application.services import CaptureProxyService, LogService, MetricsWorker


def get_log_store(request: Request) -> LogStore:
    return request.app.state.log_store


def get_metrics_worker(request: Request) -> MetricsWorker | None:
    return getattr(request.app.state, "metrics_worker", None)


def get_capture_proxy_service(request: Request) -> CaptureProxyService:
    return request.app.state.capture_proxy_service


def get_log_service(request: Request) -> LogService:
    """Provides a LogService over the shared store and worker."""
    return LogService(store=get_log_store(request), worker=get_metrics_worker(request))
