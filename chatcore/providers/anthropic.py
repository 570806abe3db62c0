import logging
from typing import Any, Dict, Sequence

from chatcore.common.models import (
    ChatMessage,
    GenerationConfig,
    GenerationResult,
    Provider,
    Usage,
)
from chatcore.providers.base import ProviderAdapter, classify_message, iter_sse_json, raise_for_stream_status
from chatcore.providers.utils.normalization import MessageNormalizer

logger = logging.getLogger("ChatCore")

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 1000

FINISH_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
}


class AnthropicAdapter(ProviderAdapter):
    """Text generation over the Anthropic Messages API."""

    provider = Provider.ANTHROPIC

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _payload(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> Dict[str, Any]:
        system, history = MessageNormalizer.normalize_for_anthropic(
            MessageNormalizer.render_anthropic(messages)
        )
        # max_tokens is mandatory for this API; penalties are not accepted
        payload: Dict[str, Any] = {
            "model": config.model,
            "messages": history,
            "max_tokens": config.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system:
            payload["system"] = system
        if config.temperature is not None:
            payload["temperature"] = min(config.temperature, 1.0)
        if config.top_p is not None:
            payload["top_p"] = config.top_p
        if config.top_k is not None:
            payload["top_k"] = config.top_k
        return payload

    async def _generate_text(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> GenerationResult:
        async with self._get_http_client() as client:
            response = await client.post(
                f"{self.api_base}/messages",
                json=self._payload(messages, config),
                headers=self._headers(),
                timeout=self.timeout,
            )
        response.raise_for_status()
        data = response.json()

        text = "".join(
            block.get("text", "") for block in data["content"] if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        return GenerationResult(
            content=text,
            usage=Usage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            finish_reason=FINISH_REASONS.get(data.get("stop_reason"), data.get("stop_reason")),
            served_by=self._candidate(config),
        )

    async def _stream_text(self, messages: Sequence[ChatMessage], config: GenerationConfig):
        payload = self._payload(messages, config)
        payload["stream"] = True

        logger.info(f"[anthropic] Starting stream for model: {config.model}")
        async with self._get_http_client() as client:
            async with client.stream(
                "POST",
                f"{self.api_base}/messages",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            ) as response:
                await raise_for_stream_status(response)
                async for event in iter_sse_json(response, "anthropic"):
                    event_type = event.get("type")
                    if event_type == "content_block_delta":
                        delta = event.get("delta") or {}
                        if delta.get("type") == "text_delta" and delta.get("text"):
                            yield delta["text"]
                    elif event_type == "message_stop":
                        break
                    elif event_type == "error":
                        error = event.get("error") or {}
                        error_msg = f"{error.get('type', 'error')}: {error.get('message', 'Unknown error')}"
                        logger.error(f"[anthropic] Stream Error: {error_msg}")
                        raise classify_message(error_msg, "anthropic", config.model)
