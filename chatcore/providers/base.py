import json as json_lib
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from chatcore.common.errors import (
    CapabilityError,
    FatalUpstreamError,
    TransientUpstreamError,
    UpstreamError,
)
from chatcore.common.models import (
    Candidate,
    ChatMessage,
    GeneratedImage,
    GenerationConfig,
    GenerationResult,
    ImageGenerationConfig,
    Provider,
)

logger = logging.getLogger("ChatCore")

TRANSIENT_STATUS_CODES = {408, 409, 429, 529}
RATE_LIMIT_MARKERS = ("quota", "rate limit", "rate_limit", "ratelimit", "resource_exhausted", "too many requests")
OVERLOAD_MARKERS = ("overloaded", "unavailable", "try again")


def parse_error_message(response: httpx.Response) -> str:
    """Parses the upstream error message out of an error response body."""
    try:
        error_json = response.json()
        if isinstance(error_json, dict):
            error_details = error_json.get("error", {})
            if isinstance(error_details, dict) and "message" in error_details:
                return str(error_details["message"])
            if isinstance(error_details, str):
                return error_details
            if "detail" in error_json:
                return str(error_json["detail"])
    except (json_lib.JSONDecodeError, ValueError, httpx.ResponseNotRead, httpx.StreamClosed):
        pass

    try:
        return response.text or f"HTTP {response.status_code}"
    except (httpx.ResponseNotRead, httpx.StreamClosed):
        return f"HTTP {response.status_code}"


def classify_message(message: str, provider: str, model: str, status_code: Optional[int] = None) -> UpstreamError:
    """Classifies an upstream failure from its HTTP status and message text."""
    lowered = message.lower()
    rate_limited = status_code == 429 or any(m in lowered for m in RATE_LIMIT_MARKERS)
    transient = (
        rate_limited
        or (status_code is not None and (status_code in TRANSIENT_STATUS_CODES or status_code >= 500))
        or (status_code is None and any(m in lowered for m in OVERLOAD_MARKERS))
    )
    error_cls = TransientUpstreamError if transient else FatalUpstreamError
    return error_cls(
        message,
        provider=provider,
        model=model,
        status_code=status_code,
        rate_limited=rate_limited,
    )


async def normalize_error(exc: Exception, provider: str, model: str) -> UpstreamError:
    """Maps any exception raised while talking to a provider onto the two upstream classes."""
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            await exc.response.aread()
        except (httpx.StreamClosed, httpx.StreamConsumed):
            pass
        except httpx.HTTPError as read_err:
            logger.warning(f"Could not read error response body: {read_err}")
        status_code = exc.response.status_code
        message = parse_error_message(exc.response)
        return classify_message(f"HTTP {status_code}: {message}", provider, model, status_code)
    if isinstance(exc, httpx.TimeoutException):
        return TransientUpstreamError(f"Timeout: {exc!r}", provider=provider, model=model)
    if isinstance(exc, httpx.TransportError):
        return TransientUpstreamError(f"Transport error: {exc!r}", provider=provider, model=model)
    if isinstance(exc, (ValueError, KeyError, TypeError, IndexError)):
        return FatalUpstreamError(f"Malformed response: {exc!r}", provider=provider, model=model)
    return FatalUpstreamError(f"Unexpected error: {exc!r}", provider=provider, model=model)


async def raise_for_stream_status(response: httpx.Response) -> None:
    """raise_for_status for streamed responses; the error body is read first so it can be classified."""
    if response.is_error:
        await response.aread()
    response.raise_for_status()


async def iter_sse_json(response: httpx.Response, provider: str) -> AsyncIterator[Dict[str, Any]]:
    """Yields the JSON payload of each ``data:`` line until ``[DONE]``."""
    async for line in response.aiter_lines():
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if data == "[DONE]":
            break
        if not data:
            continue
        try:
            yield json_lib.loads(data)
        except json_lib.JSONDecodeError:
            logger.warning(f"[{provider}] Could not parse stream chunk: '{data[:200]}'")


class ProviderAdapter(ABC):
    """Uniform call surface over one upstream provider.

    Subclasses translate every failure of their upstream into
    TransientUpstreamError or FatalUpstreamError; raw httpx exceptions never
    cross this boundary. Unsupported operations raise CapabilityError
    without touching the network.
    """

    provider: Provider

    def __init__(
        self,
        api_key: str,
        api_base: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    @asynccontextmanager
    async def _get_http_client(self):
        """Yields the shared http client, or a private one closed on exit."""
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient() as client:
                yield client

    def _candidate(self, config: GenerationConfig) -> Candidate:
        return Candidate(provider=self.provider, model=config.model)

    @abstractmethod
    async def _generate_text(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> GenerationResult:
        ...

    @abstractmethod
    def _stream_text(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> AsyncIterator[str]:
        ...

    async def generate_text(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> GenerationResult:
        try:
            return await self._generate_text(messages, config)
        except Exception as e:
            raise await normalize_error(e, self.provider.value, config.model) from e

    async def stream_text(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> AsyncIterator[str]:
        try:
            async for delta in self._stream_text(messages, config):
                if delta:
                    yield delta
        except Exception as e:
            raise await normalize_error(e, self.provider.value, config.model) from e

    async def generate_image(self, prompt: str, config: ImageGenerationConfig) -> List[GeneratedImage]:
        raise CapabilityError(f"Provider '{self.provider.value}' does not support image generation")

    async def embed(self, text: str, model: str) -> List[float]:
        raise CapabilityError(f"Provider '{self.provider.value}' does not support embeddings")
