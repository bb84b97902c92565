"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import httpx
from fastapi import FastAPI

from tap_proxy.config import Settings, get_settings
from tap_proxy.application.interfaces import TokenCounter
from tap_proxy.application.services import (
    AgentTagAnalyzer,
    CaptureProxyService,
    MetricsRegistry,
    MetricsWorker,
    TokenBreakdownAnalyzer,
    ToolMetricsAnalyzer,
)
from tap_proxy.infrastructure.logging.log_config import setup_logging
from tap_proxy.infrastructure.storage.json_log_store import JsonFileLogStore
from tap_proxy.infrastructure.token_counting import AnthropicTokenCounter, HeuristicTokenCounter
from tap_proxy.infrastructure.watch import LogDirectoryWatcher
from tap_proxy.presentation.api.router import router as api_router
from tap_proxy.presentation.proxy.router import router as proxy_router

logger = logging.getLogger(__name__)


def _build_token_counter(settings: Settings, http_client: httpx.AsyncClient) -> TokenCounter:
    if settings.token_counter == "estimate":
        logger.info("Token counting uses the offline character estimate")
        return HeuristicTokenCounter()
    return AnthropicTokenCounter(
        api_key=settings.upstream_api_key,
        base_url=settings.upstream_base_url,
        http_client=http_client,
    )


def _build_metrics_worker(
    settings: Settings, store: JsonFileLogStore, http_client: httpx.AsyncClient
) -> MetricsWorker:
    counter = _build_token_counter(settings, http_client)
    registry = MetricsRegistry(
        [
            AgentTagAnalyzer(),
            TokenBreakdownAnalyzer(counter),
            ToolMetricsAnalyzer(counter),
        ]
    )

    change_source = None
    if settings.metrics_watch_for_new:
        change_source = LogDirectoryWatcher(store.location, accept=store.is_valid_name)

    return MetricsWorker(
        registry,
        store,
        change_source=change_source,
        poll_interval=settings.metrics_poll_interval,
        process_existing=settings.metrics_process_existing,
        watch_for_new=settings.metrics_watch_for_new,
        max_concurrency=settings.metrics_max_concurrency,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan — validate config, open the client, start the worker."""
    settings = get_settings()
    settings.validate_required()
    setup_logging()

    # 1. One outbound client for the whole process; streaming reads never time out
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(None))

    # 2. Interaction log storage
    store = JsonFileLogStore(settings.log_dir)
    logger.info("Writing interaction logs to %s", store.location)

    # 3. Metrics pipeline
    worker = None
    if settings.metrics_enabled:
        worker = _build_metrics_worker(settings, store, http_client)

    # 4. Capture proxy
    proxy_service = CaptureProxyService(
        http_client=http_client,
        store=store,
        upstream_base_url=settings.upstream_base_url,
        api_key=settings.upstream_api_key,
    )

    app.state.http_client = http_client
    app.state.log_store = store
    app.state.metrics_worker = worker
    app.state.capture_proxy_service = proxy_service

    if worker is not None:
        await worker.start()
    logger.info("Proxying /v1/* to %s", settings.upstream_base_url)

    yield

    # Shutdown
    if worker is not None:
        await worker.stop()
    await http_client.aclose()


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_title,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(api_router)
    app.include_router(proxy_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tap_proxy.main:app",
        host=settings.host,
        port=settings.port,
    )
