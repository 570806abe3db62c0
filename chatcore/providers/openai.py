import logging
from typing import Any, Dict, List, Sequence

from chatcore.common.models import (
    ChatMessage,
    GeneratedImage,
    GenerationConfig,
    GenerationResult,
    ImageGenerationConfig,
    Provider,
    Usage,
)
from chatcore.providers.base import (
    ProviderAdapter,
    classify_message,
    iter_sse_json,
    normalize_error,
    raise_for_stream_status,
)
from chatcore.providers.utils.normalization import MessageNormalizer

logger = logging.getLogger("ChatCore")

CHAT_PARAMS = ("max_tokens", "temperature", "top_p", "presence_penalty", "frequency_penalty")
IMAGE_PARAMS = ("size", "quality", "style", "n")


class OpenAIAdapter(ProviderAdapter):
    """Chat completions, image generation and embeddings over the OpenAI REST API."""

    provider = Provider.OPENAI

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _chat_payload(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": config.model,
            "messages": MessageNormalizer.normalize_for_openai(
                MessageNormalizer.render_openai(messages)
            ),
        }
        # top_k is not an OpenAI parameter
        payload.update(config.model_dump(include=set(CHAT_PARAMS), exclude_none=True))
        return payload

    async def _generate_text(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> GenerationResult:
        payload = self._chat_payload(messages, config)
        async with self._get_http_client() as client:
            response = await client.post(
                f"{self.api_base}/chat/completions",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        response.raise_for_status()
        data = response.json()

        choice = data["choices"][0]
        usage = data.get("usage") or {}
        return GenerationResult(
            content=choice["message"].get("content") or "",
            usage=Usage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            ),
            finish_reason=choice.get("finish_reason"),
            served_by=self._candidate(config),
        )

    async def _stream_text(self, messages: Sequence[ChatMessage], config: GenerationConfig):
        payload = self._chat_payload(messages, config)
        payload["stream"] = True

        logger.info(f"[openai] Starting stream for model: {config.model}")
        async with self._get_http_client() as client:
            async with client.stream(
                "POST",
                f"{self.api_base}/chat/completions",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            ) as response:
                await raise_for_stream_status(response)
                async for chunk in iter_sse_json(response, "openai"):
                    if "error" in chunk:
                        error = chunk["error"]
                        error_msg = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
                        logger.error(f"[openai] Stream Error: {error_msg}")
                        raise classify_message(error_msg, "openai", config.model)
                    choices = chunk.get("choices")
                    if not choices:
                        continue
                    content = (choices[0].get("delta") or {}).get("content")
                    if content:
                        yield content

    async def generate_image(self, prompt: str, config: ImageGenerationConfig) -> List[GeneratedImage]:
        payload: Dict[str, Any] = {"model": config.model, "prompt": prompt}
        payload.update(config.model_dump(include=set(IMAGE_PARAMS), exclude_none=True))
        try:
            async with self._get_http_client() as client:
                response = await client.post(
                    f"{self.api_base}/images/generations",
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            response.raise_for_status()
            return [
                GeneratedImage(url=item["url"], revised_prompt=item.get("revised_prompt"))
                for item in response.json()["data"]
            ]
        except Exception as e:
            raise await normalize_error(e, "openai", config.model) from e

    async def embed(self, text: str, model: str) -> List[float]:
        try:
            async with self._get_http_client() as client:
                response = await client.post(
                    f"{self.api_base}/embeddings",
                    json={"model": model, "input": text},
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            response.raise_for_status()
            return list(response.json()["data"][0]["embedding"])
        except Exception as e:
            raise await normalize_error(e, "openai", model) from e
