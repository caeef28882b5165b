"""
Upstream provider client (OpenRouter, OpenAI-compatible API).

Forwards chat completion requests with:
- retry on HTTP 429 only, exponential backoff from a base delay
- separate per-attempt deadlines for streaming and buffered calls
- a response wrapper that releases the upstream connection exactly
  once, however the caller stops reading
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Union
import httpx
from pydantic import ValidationError

from enrichproxy.llm.errors import (
    RateLimitError,
    RateLimitExhaustedError,
    UpstreamDecodeError,
    UpstreamStatusError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)
from enrichproxy.models.chat import ChatRequest, ModelInfo, ModelList

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_TIMEOUT = 60.0
STREAMING_TIMEOUT = 300.0
MAX_RETRIES = 3
INITIAL_BACKOFF = 0.5


class UpstreamResponse:
    """
    A successful upstream response handed to the caller.

    Owns the underlying httpx response for its whole lifetime. Reads are
    bounded by the attempt's deadline. ``aclose()`` releases the
    connection exactly once, whether the body was fully consumed, the
    caller stopped early (client disconnect) or a read failed.
    """

    def __init__(self, response: httpx.Response, deadline: float):
        self._response = response
        self._deadline = deadline
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def aread(self) -> bytes:
        """Read the whole body (non-streaming responses)."""
        try:
            async with asyncio.timeout_at(self._deadline):
                return await self._response.aread()
        except TimeoutError as e:
            raise UpstreamTimeoutError("upstream deadline exceeded while reading body") from e
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"reading response: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamTransportError(f"reading response: {e}") from e

    async def aiter_lines(self) -> AsyncIterator[str]:
        """Yield the body line by line without buffering the whole response."""
        lines = self._response.aiter_lines()
        while True:
            try:
                async with asyncio.timeout_at(self._deadline):
                    line = await lines.__anext__()
            except StopAsyncIteration:
                return
            except TimeoutError as e:
                raise UpstreamTimeoutError("upstream deadline exceeded mid-stream") from e
            except httpx.TimeoutException as e:
                raise UpstreamTimeoutError(f"reading stream: {e}") from e
            except httpx.TransportError as e:
                raise UpstreamTransportError(f"reading stream: {e}") from e
            yield line

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()

    async def __aenter__(self) -> "UpstreamResponse":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class ProxyClient:
    """
    Client for the cloud chat-completion provider.

    Holds only immutable configuration and a shared httpx connection
    pool, so one instance serves all concurrent requests.
    """

    provider_name = "openrouter"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        referer: str = "https://github.com/enrichproxy/enrichproxy",
        title: str = "enrichproxy",
        request_timeout: float = DEFAULT_TIMEOUT,
        stream_timeout: float = STREAMING_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_key: Bearer token for the provider
            base_url: API base URL (defaults to OpenRouter)
            referer: Sent as HTTP-Referer for provider attribution
            title: Sent as X-Title for provider attribution
            request_timeout: Per-attempt deadline for buffered calls (s)
            stream_timeout: Per-attempt deadline for streaming calls (s)
            max_retries: Total attempts when the provider answers 429
            initial_backoff: Delay before the second attempt; doubles after
            http_client: Pre-built client (tests inject a MockTransport here)
        """
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.referer = referer
        self.title = title
        self.request_timeout = request_timeout
        self.stream_timeout = stream_timeout
        self.max_retries = max(1, max_retries)
        self.initial_backoff = initial_backoff
        self._owns_client = http_client is None
        # Deadlines are enforced per attempt, not by httpx
        self._client = http_client or httpx.AsyncClient(timeout=None)

    def _get_headers(self) -> Dict[str, str]:
        """Build request headers with authentication and attribution."""
        return {
            "Authorization": f"Bearer {self.api_key or ''}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.referer,
            "X-Title": self.title,
        }

    async def chat(self, request: ChatRequest) -> UpstreamResponse:
        """
        Send a chat completion request and return the open response.

        For streaming requests the body carries SSE events, otherwise the
        complete JSON response. The caller must close the returned
        response (``async with`` or ``aclose()``).

        Raises:
            RateLimitExhaustedError: every attempt got HTTP 429
            UpstreamStatusError: any other non-2xx status
            UpstreamTransportError: connection failure
            UpstreamTimeoutError: the per-attempt deadline elapsed
            asyncio.CancelledError: the caller was cancelled, including
                during a backoff wait
        """
        body = json.dumps(request.to_payload()).encode("utf-8")
        timeout = self.stream_timeout if request.stream else self.request_timeout

        last_error: Optional[RateLimitError] = None
        for attempt in range(self.max_retries):
            try:
                return await self._do_chat(body, timeout)
            except RateLimitError as e:
                last_error = e

            if attempt < self.max_retries - 1:
                backoff = self.initial_backoff * (2 ** attempt)
                logger.warning(
                    f"Upstream rate limited (attempt {attempt + 1}/{self.max_retries}), "
                    f"retrying in {backoff:.2f}s"
                )
                await asyncio.sleep(backoff)

        raise RateLimitExhaustedError(self.max_retries, last_error) from last_error

    async def send(self, request: ChatRequest) -> Union[UpstreamResponse, bytes]:
        """
        Forward a request, choosing delivery by its streaming flag.

        Streaming requests return the open UpstreamResponse for
        incremental relay; buffered requests return the body bytes with
        the response already closed.
        """
        upstream = await self.chat(request)
        if request.stream:
            return upstream
        async with upstream:
            return await upstream.aread()

    async def _do_chat(self, body: bytes, timeout: float) -> UpstreamResponse:
        """Run one attempt. Raises RateLimitError on 429."""
        deadline = asyncio.get_running_loop().time() + timeout
        http_request = self._client.build_request(
            "POST",
            f"{self.base_url}/chat/completions",
            headers=self._get_headers(),
            content=body,
        )

        try:
            async with asyncio.timeout_at(deadline):
                response = await self._client.send(http_request, stream=True)
        except TimeoutError as e:
            raise UpstreamTimeoutError(f"no upstream response within {timeout:g}s") from e
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"executing request: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamTransportError(f"executing request: {e}") from e

        if response.status_code == 429:
            await response.aclose()
            raise RateLimitError(response.status_code)

        if not response.is_success:
            error_body = b""
            try:
                async with asyncio.timeout_at(deadline):
                    error_body = await response.aread()
            except (TimeoutError, httpx.TransportError) as e:
                logger.debug(f"Could not read upstream error body: {e}")
            finally:
                await response.aclose()
            raise UpstreamStatusError(
                response.status_code, error_body.decode("utf-8", errors="replace")
            )

        return UpstreamResponse(response, deadline)

    async def list_models(self) -> List[ModelInfo]:
        """
        Fetch the models the provider exposes. Errors are surfaced as-is;
        this call is never retried.
        """
        deadline = asyncio.get_running_loop().time() + self.request_timeout
        try:
            async with asyncio.timeout_at(deadline):
                response = await self._client.get(
                    f"{self.base_url}/models",
                    headers=self._get_headers(),
                )
        except TimeoutError as e:
            raise UpstreamTimeoutError(f"no models response within {self.request_timeout:g}s") from e
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"requesting models: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamTransportError(f"requesting models: {e}") from e

        if not response.is_success:
            raise UpstreamStatusError(response.status_code, response.text)

        try:
            data: Any = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            if data.get("data") is None:
                return []
            models = ModelList.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise UpstreamDecodeError(f"decoding models: {e}") from e

        return models.data

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
