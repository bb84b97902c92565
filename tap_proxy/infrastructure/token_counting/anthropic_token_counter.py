"""Anthropic token counter — implements the TokenCounter interface.

Uses the ``/v1/messages/count_tokens`` endpoint, which is authoritative for
the model in question. The endpoint only counts whole requests, so system
prompt and tool definition sizes are isolated by differential counting
against a fixed baseline request.
"""

import logging
from typing import Any

import httpx

from tap_proxy.application.interfaces.token_counter import TokenCounter
from tap_proxy.domain.exceptions import TokenCountError

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
_BASELINE_TEXT = "Hi"


class AnthropicTokenCounter(TokenCounter):
    """Infrastructure adapter — counts tokens through the Anthropic API.

    Never estimates: any non-200 answer raises ``TokenCountError`` so the
    analyzer that asked fails visibly instead of recording a made-up number.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.anthropic.com",
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._http_client = http_client
        self._baselines: dict[tuple[str, bool], int] = {}

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def methodology(self) -> str:
        return "anthropic-count-tokens"

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Return the injected client or create a new one."""
        if self._http_client is not None:
            return self._http_client
        return httpx.AsyncClient(timeout=60.0)

    @staticmethod
    def _build_payload(
        model: str,
        *,
        system: str | None = None,
        user: str | None = None,
        assistant: str | None = None,
        tools: list[Any] | None = None,
    ) -> dict[str, Any]:
        messages = []
        if user:
            messages.append({"role": "user", "content": user})
        if assistant:
            messages.append({"role": "assistant", "content": assistant})

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages or [{"role": "user", "content": _BASELINE_TEXT}],
        }
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = tools
        return payload

    async def count_request(self, payload: dict[str, Any]) -> int:
        """POST one count_tokens request and return its ``input_tokens``."""
        url = f"{self._base_url}/v1/messages/count_tokens"
        client = await self._get_client()
        should_close = self._http_client is None

        try:
            response = await client.post(url, headers=self._get_headers(), json=payload)
            if response.status_code != 200:
                self._raise_count_error(response)
            data = response.json()
            return int(data["input_tokens"])
        finally:
            if should_close:
                await client.aclose()

    async def _baseline(self, model: str, with_system: bool) -> int:
        key = (model, with_system)
        if key not in self._baselines:
            payload = self._build_payload(
                model,
                system=_BASELINE_TEXT if with_system else None,
                user=_BASELINE_TEXT,
            )
            self._baselines[key] = await self.count_request(payload)
        return self._baselines[key]

    async def count_system(self, model: str, text: str) -> int:
        if not text:
            return 0
        with_system = await self.count_request(
            self._build_payload(model, system=text, user=_BASELINE_TEXT)
        )
        return with_system - await self._baseline(model, with_system=False)

    async def count_user(self, model: str, text: str) -> int:
        if not text:
            return 0
        return await self.count_request(self._build_payload(model, user=text))

    async def count_assistant(self, model: str, text: str) -> int:
        if not text:
            return 0
        return await self.count_request(self._build_payload(model, assistant=text))

    async def count_tools(self, model: str, tools: list[Any]) -> int:
        if not tools:
            return 0
        with_tools = await self.count_request(
            self._build_payload(model, system=_BASELINE_TEXT, user=_BASELINE_TEXT, tools=tools)
        )
        return with_tools - await self._baseline(model, with_system=True)

    def _raise_count_error(self, response: httpx.Response) -> None:
        try:
            data = response.json()
            message = data.get("error", {}).get("message", response.text)
        except ValueError:
            message = response.text

        logger.warning("count_tokens failed (%d): %s", response.status_code, message)
        raise TokenCountError(
            provider=self.provider_name,
            status_code=response.status_code,
            message=message,
        )
