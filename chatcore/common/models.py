from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


PROVIDER_DISPLAY_NAMES = {
    Provider.OPENAI: "OpenAI",
    Provider.ANTHROPIC: "Anthropic",
    Provider.GOOGLE: "Google",
}


class Modality(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class CostTier(str, Enum):
    CHEAP = "cheap"
    EXPENSIVE = "expensive"
    IMAGE = "image"


class ModelInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    modality: Modality = Modality.TEXT
    cost_tier: CostTier = CostTier.CHEAP


# --- Request side ---


class Attachment(BaseModel):
    id: str
    file_name: str
    file_type: Literal["image", "document", "audio", "video"]
    file_size: int
    mime_type: str
    url: str


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str
    attachments: Optional[List[Attachment]] = None


class GenerationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Provider
    model: str
    max_tokens: Optional[int] = Field(default=None, ge=1, le=8000)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=100)
    presence_penalty: Optional[float] = Field(default=None, ge=-2, le=2)
    frequency_penalty: Optional[float] = Field(default=None, ge=-2, le=2)

    def with_defaults(self, defaults: Dict[str, Any]) -> "GenerationConfig":
        """Returns a copy where every unset numeric field takes the provider default."""
        filled = {
            key: value
            for key, value in defaults.items()
            if getattr(self, key, None) is None
        }
        return self.model_copy(update=filled)

    def for_candidate(self, candidate: "Candidate") -> "GenerationConfig":
        return self.model_copy(
            update={"provider": candidate.provider, "model": candidate.model}
        )


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    messages: List[ChatMessage] = Field(min_length=1)
    config: GenerationConfig


class ImageGenerationConfig(GenerationConfig):
    size: Optional[
        Literal["256x256", "512x512", "1024x1024", "1024x1792", "1792x1024"]
    ] = None
    quality: Optional[Literal["standard", "hd"]] = None
    style: Optional[Literal["vivid", "natural"]] = None
    n: Optional[int] = Field(default=None, ge=1, le=4)


class ImageGenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str = Field(min_length=1, max_length=1000)
    config: ImageGenerationConfig


# --- Result side ---


class Candidate(BaseModel):
    """A concrete (provider, model) pair considered for serving a request."""

    model_config = ConfigDict(frozen=True)

    provider: Provider
    model: str

    def __str__(self) -> str:
        return f"{self.provider.value}:{self.model}"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerationResult(BaseModel):
    content: str
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None
    served_by: Candidate
    truncated: bool = False


class GeneratedImage(BaseModel):
    url: str
    revised_prompt: Optional[str] = None


class ImageGenerationResponse(BaseModel):
    images: List[GeneratedImage]
    served_by: Optional[Candidate] = None


class StreamEvent(BaseModel):
    """One item of the delta sequence a stream consumer receives."""

    type: Literal["start", "delta", "end", "cancelled", "error"]
    content: Optional[str] = None
    message: Optional[str] = None
    served_by: Optional[Candidate] = None
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None
    rate_limited: Optional[bool] = None


# --- HTTP bodies ---


class ChatCompletionBody(GenerationRequest):
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None

    def to_request(self) -> GenerationRequest:
        return GenerationRequest(messages=self.messages, config=self.config)


class ChatStreamBody(ChatCompletionBody):
    mode: Optional[Literal["native", "synthesized"]] = None


class ImageGenerationBody(ImageGenerationRequest):
    user_id: Optional[str] = None

    def to_request(self) -> ImageGenerationRequest:
        return ImageGenerationRequest(prompt=self.prompt, config=self.config)


class ModelValidationBody(BaseModel):
    provider: str
    model: str
