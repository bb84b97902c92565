"""Capture proxy service — forwards calls upstream and records each interaction.

Every inbound request produces exactly one persisted ``InteractionRecord``:
  - buffered responses are read fully, returned to the caller and recorded,
  - event-stream responses are relayed chunk by chunk while being decoded,
    kept verbatim and fed to a ``StreamReconstructor``,
  - any failure reaching or reading the upstream becomes a 502 for the
    caller and an error record.

Persistence goes through the synchronous ``LogStore`` inside ``finally``
blocks, so a cancelled relay (caller disconnect) still leaves its record.
"""

import asyncio
import codecs
import json
import logging
import time
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from tap_proxy.application.interfaces.log_store import LogStore
from tap_proxy.application.services.stream_reconstructor import StreamReconstructor
from tap_proxy.domain.entities import (
    CapturedRequest,
    CapturedResponse,
    InteractionRecord,
    sanitize_headers,
)

logger = logging.getLogger(__name__)

METHODS_WITHOUT_BODY = frozenset({"GET", "HEAD"})

# Hop-specific or recomputed by the outbound client.
_DROPPED_REQUEST_HEADERS = frozenset({"host", "content-length", "accept-encoding"})
# Recomputed by the ASGI server for the body actually sent to the caller.
_DROPPED_RESPONSE_HEADERS = frozenset(
    {"content-length", "content-encoding", "transfer-encoding", "connection"}
)

UPSTREAM_UNREACHABLE = "Failed to reach upstream service."
CLIENT_DISCONNECTED = "client disconnected"
# Recorded when the caller leaves before upstream headers arrive (nginx convention).
CLIENT_CLOSED_REQUEST = 499


@dataclass
class ProxyResult:
    """What the presentation layer needs to answer the caller.

    Exactly one of ``content`` (buffered) or ``stream`` (relayed) is set.
    """

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes | None = None
    stream: "CapturedStream | None" = None

    @property
    def is_stream(self) -> bool:
        return self.stream is not None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _parse_request_body(raw: bytes, content_type: str) -> Any:
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    if "json" in content_type or text.lstrip().startswith(("{", "[")):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass
    return text


def _parse_response_body(raw: bytes, content_type: str) -> Any:
    text = raw.decode("utf-8", errors="replace")
    if "application/json" in content_type:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Upstream declared JSON but body did not parse; storing text")
    return text


def _response_headers(upstream: httpx.Response) -> dict[str, str]:
    headers: dict[str, str] = {}
    for key, value in upstream.headers.multi_items():
        lower = key.lower()
        if lower in _DROPPED_RESPONSE_HEADERS:
            continue
        headers[lower] = f"{headers[lower]},{value}" if lower in headers else value
    return headers


class CapturedStream:
    """Relays an upstream event stream while recording it.

    Iterate ``relay()`` to obtain the raw upstream bytes. ``aclose()`` finalizes
    and persists the record exactly once; it runs automatically when the relay
    ends, fails or is cancelled, and must also be called by owners that give
    up on the stream before iterating it.
    """

    def __init__(
        self,
        upstream: httpx.Response,
        record: InteractionRecord,
        store: LogStore,
        started: float,
    ):
        self._upstream = upstream
        self._record = record
        self._store = store
        self._started = started
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._reconstructor = StreamReconstructor()
        self._chunks: list[str] = []
        self._error: str | None = None
        self._completed = False
        self._closed = False

    @property
    def record(self) -> InteractionRecord:
        return self._record

    @property
    def chunks(self) -> list[str]:
        return list(self._chunks)

    def _capture(self, text: str) -> None:
        if text:
            self._chunks.append(text)
            self._reconstructor.ingest(text)

    async def relay(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._upstream.aiter_bytes():
                self._capture(self._decoder.decode(chunk))
                yield chunk
            self._completed = True
        except httpx.HTTPError as exc:
            self._error = str(exc) or exc.__class__.__name__
            logger.error(
                "Upstream stream failed for %s %s: %s",
                self._record.method, self._record.path, self._error,
            )
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True

        self._capture(self._decoder.decode(b"", final=True))
        if not self._completed and self._error is None:
            self._error = CLIENT_DISCONNECTED
            logger.info(
                "Caller disconnected from %s %s after %d chunk(s)",
                self._record.method, self._record.path, len(self._chunks),
            )

        response = self._record.response
        if response is not None:
            response.stream_chunks = list(self._chunks)
            message = self._reconstructor.finalize()
            if message is not None:
                response.body = message.to_dict()
            response.error = self._error
        self._record.duration_ms = _elapsed_ms(self._started)

        # Persist before the await below so cancellation cannot skip it.
        self._store.write(self._record)
        logger.info(
            "Streamed %s %s -> %s in %d ms",
            self._record.method,
            self._record.path,
            response.status if response else "?",
            self._record.duration_ms,
        )
        await self._upstream.aclose()


class CaptureProxyService:
    """Forwards requests to the upstream API and records each interaction.

    The HTTP client is injected and owned by the caller (shared across
    requests, closed on application shutdown).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        store: LogStore,
        upstream_base_url: str,
        api_key: str | None = None,
    ):
        self._client = http_client
        self._store = store
        self._base_url = upstream_base_url.rstrip("/")
        self._api_key = api_key

    def build_url(self, path: str, query: str = "") -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        url = f"{self._base_url}{path}"
        return f"{url}?{query}" if query else url

    def build_headers(self, inbound: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
        """Copy caller headers for the upstream call and inject the credential."""
        headers = [
            (key, value)
            for key, value in inbound
            if key.lower() not in _DROPPED_REQUEST_HEADERS
        ]
        if self._api_key:
            headers = [(k, v) for k, v in headers if k.lower() != "x-api-key"]
            headers.append(("x-api-key", self._api_key))
        return headers

    @staticmethod
    def should_forward_body(method: str, body: bytes | None) -> bool:
        return method.upper() not in METHODS_WITHOUT_BODY and bool(body)

    async def forward(
        self,
        method: str,
        path: str,
        query: str,
        headers: Any,
        body: bytes | None,
    ) -> ProxyResult:
        """Forward one inbound request.

        Args:
            headers: Inbound headers; anything with ``multi_items()`` or ``items()``.
            body: Raw inbound body bytes.
        """
        started = time.monotonic()
        pairs = list(headers.multi_items() if hasattr(headers, "multi_items") else headers.items())
        content_type = next((v for k, v in pairs if k.lower() == "content-type"), "")

        record = InteractionRecord(
            method=method.upper(),
            path=path,
            query=query,
            request=CapturedRequest(
                headers=sanitize_headers(headers),
                body=_parse_request_body(body or b"", content_type),
            ),
        )
        url = self.build_url(path, query)
        logger.info("Proxying %s %s (id=%s)", record.method, url, record.id)

        try:
            request = self._client.build_request(
                record.method,
                url,
                headers=self.build_headers(pairs),
                content=body if self.should_forward_body(method, body) else None,
            )
            upstream = await self._client.send(request, stream=True)
        except asyncio.CancelledError:
            self._abandoned(record, started, CapturedResponse(status=CLIENT_CLOSED_REQUEST))
            raise
        except Exception as exc:
            return self._unreachable(record, started, exc)

        # Set once the CapturedStream owns closing the upstream response.
        handed_off = False
        try:
            response_headers = _response_headers(upstream)
            record.response = CapturedResponse(
                status=upstream.status_code,
                headers=sanitize_headers(response_headers),
            )
            upstream_type = upstream.headers.get("content-type", "")

            if "text/event-stream" in upstream_type:
                stream = CapturedStream(upstream, record, self._store, started)
                handed_off = True
                return ProxyResult(
                    status_code=upstream.status_code,
                    headers=response_headers,
                    stream=stream,
                )

            content = await upstream.aread()
        except asyncio.CancelledError:
            self._abandoned(
                record, started, record.response or CapturedResponse(status=CLIENT_CLOSED_REQUEST)
            )
            raise
        except Exception as exc:
            return self._unreachable(record, started, exc)
        finally:
            if not handed_off:
                await upstream.aclose()

        try:
            record.response.body = _parse_response_body(content, upstream_type)
            record.duration_ms = _elapsed_ms(started)
            logger.info(
                "Proxied %s %s -> %d in %d ms",
                record.method, record.path, upstream.status_code, record.duration_ms,
            )
        finally:
            self._store.write(record)

        return ProxyResult(
            status_code=upstream.status_code,
            headers=response_headers,
            content=content,
        )

    def _abandoned(
        self, record: InteractionRecord, started: float, response: CapturedResponse
    ) -> None:
        logger.info("Caller went away during %s %s (id=%s)", record.method, record.path, record.id)
        response.error = CLIENT_DISCONNECTED
        record.response = response
        record.duration_ms = _elapsed_ms(started)
        self._store.write(record)

    def _unreachable(
        self, record: InteractionRecord, started: float, exc: Exception
    ) -> ProxyResult:
        details = str(exc) or exc.__class__.__name__
        logger.error("Upstream request failed for %s %s: %s", record.method, record.path, details)

        record.response = CapturedResponse(status=502, headers={}, error=details)
        record.duration_ms = _elapsed_ms(started)
        self._store.write(record)

        payload = {"error": UPSTREAM_UNREACHABLE, "details": details}
        return ProxyResult(
            status_code=502,
            headers={"content-type": "application/json"},
            content=json.dumps(payload).encode("utf-8"),
        )
