"""Catch-all ``/v1/*`` route — forwards every call upstream through the capture proxy."""

from fastapi import APIRouter, Depends, Request, Response

from tap_proxy.application.services import CaptureProxyService
from tap_proxy.infrastructure.dependencies import get_capture_proxy_service
from tap_proxy.presentation.proxy.streaming import CaptureStreamingResponse

router = APIRouter(tags=["Proxy"])

PROXIED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


@router.api_route("/v1/{path:path}", methods=PROXIED_METHODS, include_in_schema=False)
async def proxy(
    path: str,
    request: Request,
    service: CaptureProxyService = Depends(get_capture_proxy_service),
) -> Response:
    """Forward the call unchanged (apart from credentials) and record it."""
    body = await request.body()
    result = await service.forward(
        request.method,
        request.url.path,
        request.url.query,
        request.headers,
        body,
    )

    if result.is_stream:
        return CaptureStreamingResponse(
            result.stream,
            status_code=result.status_code,
            headers=result.headers,
        )
    return Response(
        content=result.content or b"",
        status_code=result.status_code,
        headers=result.headers,
    )
