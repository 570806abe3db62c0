import logging
from typing import Any, Dict, List, Sequence

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

FINISH_REASONS = {"MAX_TOKENS": "length", "SAFETY": "content_filter", "RECITATION": "content_filter"}


def _construct_gemini_contents(history: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Maps normalized chat history onto Gemini ``contents`` (assistant becomes model)."""
    contents = []
    for msg in history:
        role = "model" if msg["role"] == "assistant" else "user"
        contents.append({"role": role, "parts": [{"text": msg["content"]}]})
    return contents


def _extract_text(chunk: Dict[str, Any]) -> str:
    candidates = chunk.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    # Thought parts are internal reasoning and never reach the caller
    return "".join(p.get("text", "") for p in parts if not p.get("thought", False))


class GoogleAdapter(ProviderAdapter):
    """Text generation over the Gemini generateContent API."""

    provider = Provider.GOOGLE

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def _payload(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> Dict[str, Any]:
        system, history = MessageNormalizer.normalize_for_gemini(
            MessageNormalizer.render_plain(messages)
        )
        payload: Dict[str, Any] = {"contents": _construct_gemini_contents(history)}
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        generation_config = {}
        if config.temperature is not None:
            generation_config["temperature"] = config.temperature
        if config.top_p is not None:
            generation_config["topP"] = config.top_p
        if config.top_k is not None:
            generation_config["topK"] = config.top_k
        if config.max_tokens is not None:
            generation_config["maxOutputTokens"] = config.max_tokens
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    async def _generate_text(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> GenerationResult:
        async with self._get_http_client() as client:
            response = await client.post(
                f"{self.api_base}/models/{config.model}:generateContent",
                json=self._payload(messages, config),
                headers=self._headers(),
                timeout=self.timeout,
            )
        response.raise_for_status()
        google_resp = response.json()
        usage = google_resp.get("usageMetadata", {})

        if not google_resp.get("candidates"):
            block_reason = google_resp.get("promptFeedback", {}).get("blockReason")
            raise ValueError(f"Response blocked: {block_reason}")

        raw_finish = google_resp["candidates"][0].get("finishReason", "STOP")
        return GenerationResult(
            content=_extract_text(google_resp),
            usage=Usage(
                prompt_tokens=usage.get("promptTokenCount", 0),
                completion_tokens=usage.get("candidatesTokenCount", 0),
                total_tokens=usage.get("totalTokenCount", 0),
            ),
            finish_reason=FINISH_REASONS.get(raw_finish, "stop"),
            served_by=self._candidate(config),
        )

    async def _stream_text(self, messages: Sequence[ChatMessage], config: GenerationConfig):
        logger.info(f"[google] Starting stream for model: {config.model}")
        async with self._get_http_client() as client:
            async with client.stream(
                "POST",
                f"{self.api_base}/models/{config.model}:streamGenerateContent",
                params={"alt": "sse"},
                json=self._payload(messages, config),
                headers=self._headers(),
                timeout=self.timeout,
            ) as response:
                await raise_for_stream_status(response)
                async for chunk in iter_sse_json(response, "google"):
                    if "error" in chunk:
                        error_msg = (chunk["error"] or {}).get("message", "Unknown error")
                        logger.error(f"[google] Stream Error: {error_msg}")
                        raise classify_message(error_msg, "google", config.model)
                    block_reason = (chunk.get("promptFeedback") or {}).get("blockReason")
                    if block_reason and not chunk.get("candidates"):
                        raise ValueError(f"Response blocked: {block_reason}")
                    text = _extract_text(chunk)
                    if text:
                        yield text
