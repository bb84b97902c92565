"""Streaming response that stops relaying the moment the caller disconnects."""

import asyncio
import logging

from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from tap_proxy.application.services.capture_proxy_service import CapturedStream

logger = logging.getLogger(__name__)


class CaptureStreamingResponse(StreamingResponse):
    """Relays a ``CapturedStream`` to the caller.

    Streaming and disconnect detection run as sibling tasks; whichever
    finishes first cancels the other. A disconnect therefore cancels the
    relay mid-read, which closes the upstream response and persists the
    partial record. The capture is closed on every exit path.
    """

    def __init__(
        self,
        capture: CapturedStream,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(capture.relay(), status_code=status_code, headers=headers)
        self._capture = capture

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        stream_task = asyncio.create_task(self.stream_response(send))
        disconnect_task = asyncio.create_task(self.listen_for_disconnect(receive))
        try:
            done, _ = await asyncio.wait(
                {stream_task, disconnect_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (stream_task, disconnect_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(stream_task, disconnect_task, return_exceptions=True)
            await self._capture.aclose()

        if disconnect_task in done and stream_task.cancelled():
            logger.debug("Relay for %s cancelled by caller disconnect", self._capture.record.id)
            return

        if stream_task in done and not stream_task.cancelled() and stream_task.exception() is not None:
            raise stream_task.exception()

        if self.background is not None:
            await self.background()
