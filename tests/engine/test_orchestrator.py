import asyncio

import pytest

from chatcore.common.errors import (
    RATE_LIMIT_USER_MESSAGE,
    AllCandidatesExhausted,
    CapabilityError,
    DeadlineExceeded,
    GenerationCancelled,
    RetriesExhausted,
    ValidationError,
)
from chatcore.common.models import (
    ChatMessage,
    GeneratedImage,
    GenerationConfig,
    GenerationRequest,
    ImageGenerationConfig,
    ImageGenerationRequest,
)
from chatcore.engine.cancellation import CancelToken
from chatcore.engine.retry import RetryExecutor, RetryPolicy

from conftest import ScriptedAdapter, fatal, make_orchestrator, make_request, no_sleep, transient


def three_adapters(openai=None, google=None, anthropic=None):
    return {
        "openai": ScriptedAdapter("openai", openai),
        "google": ScriptedAdapter("google", google),
        "anthropic": ScriptedAdapter("anthropic", anthropic),
    }


@pytest.mark.asyncio
async def test_first_candidate_success_never_touches_fallbacks():
    adapters = three_adapters(openai=["from openai"])
    orchestrator = make_orchestrator(adapters)

    result = await orchestrator.generate(make_request())

    assert result.content == "from openai"
    assert str(result.served_by) == "openai:gpt-4o"
    assert len(adapters["openai"].calls) == 1
    assert adapters["google"].calls == []
    assert adapters["anthropic"].calls == []


@pytest.mark.asyncio
async def test_served_by_reports_second_candidate_after_exhaustion():
    adapters = three_adapters(
        openai=[transient(), transient(), transient()],
        google=["from google"],
    )
    orchestrator = make_orchestrator(adapters)

    result = await orchestrator.generate(make_request())

    assert result.content == "from google"
    assert result.served_by.provider.value == "google"
    assert result.served_by.model == "gemini-1.5-flash"
    assert len(adapters["openai"].calls) == 3
    assert len(adapters["google"].calls) == 1
    assert adapters["anthropic"].calls == []


@pytest.mark.asyncio
async def test_fatal_error_skips_retry_but_falls_back():
    adapters = three_adapters(openai=[fatal()], google=["from google"])
    orchestrator = make_orchestrator(adapters)

    result = await orchestrator.generate(make_request())

    assert str(result.served_by) == "google:gemini-1.5-flash"
    assert len(adapters["openai"].calls) == 1


@pytest.mark.asyncio
async def test_end_to_end_transient_twice_then_google_fallback():
    # Both attempts the policy allows fail, so openai is exhausted
    adapters = three_adapters(openai=[transient(), transient()], google=["Hello!"])
    orchestrator = make_orchestrator(
        adapters,
        retry_executor=RetryExecutor(RetryPolicy(max_attempts=2), sleep=no_sleep),
    )

    result = await orchestrator.generate(make_request(content="hi"))

    assert result.content == "Hello!"
    assert result.served_by.provider.value == "google"
    assert result.served_by.model == "gemini-1.5-flash"
    assert len(adapters["openai"].calls) == 2


@pytest.mark.asyncio
async def test_end_to_end_default_policy_falls_back_after_three_transients():
    adapters = three_adapters(openai=[transient(), transient(), transient()], google=["Hello!"])
    orchestrator = make_orchestrator(adapters)

    result = await orchestrator.generate(make_request(content="hi"))
    assert (result.content, str(result.served_by)) == ("Hello!", "google:gemini-1.5-flash")


@pytest.mark.asyncio
async def test_unknown_model_fails_before_any_call():
    adapters = three_adapters()
    orchestrator = make_orchestrator(adapters)

    with pytest.raises(ValidationError):
        await orchestrator.generate(make_request(model="not-a-model"))

    assert all(a.calls == [] for a in adapters.values())


@pytest.mark.asyncio
async def test_unconfigured_requested_provider_is_a_validation_error():
    adapters = {"openai": ScriptedAdapter("openai")}
    orchestrator = make_orchestrator(adapters)

    with pytest.raises(ValidationError):
        await orchestrator.generate(make_request(provider="google", model="gemini-1.5-pro"))
    assert adapters["openai"].calls == []


@pytest.mark.asyncio
async def test_image_model_rejected_for_text_generation():
    orchestrator = make_orchestrator(three_adapters())
    with pytest.raises(ValidationError):
        await orchestrator.generate(make_request(model="dall-e-3"))


@pytest.mark.asyncio
async def test_modality_check_goes_through_catalog(monkeypatch):
    adapters = three_adapters()
    orchestrator = make_orchestrator(adapters)
    asked = []

    def supports(candidate, modality):
        asked.append((str(candidate), modality.value))
        return False

    monkeypatch.setattr(orchestrator.catalog, "supports", supports)

    with pytest.raises(ValidationError, match="does not support text generation"):
        await orchestrator.generate(make_request())
    assert asked == [("openai:gpt-4o", "text")]
    assert adapters["openai"].calls == []


@pytest.mark.asyncio
async def test_all_candidates_exhausted_with_rate_limit_hint():
    adapters = three_adapters(
        openai=[fatal()],
        google=[fatal(provider="google")],
        anthropic=[transient(provider="anthropic", rate_limited=True)] * 3,
    )
    orchestrator = make_orchestrator(adapters)

    with pytest.raises(AllCandidatesExhausted) as exc_info:
        await orchestrator.generate(make_request())

    error = exc_info.value
    assert error.rate_limited is True
    assert isinstance(error.last_error, RetriesExhausted)
    assert error.user_message == RATE_LIMIT_USER_MESSAGE


@pytest.mark.asyncio
async def test_all_candidates_exhausted_without_rate_limit_keeps_message():
    adapters = three_adapters(
        openai=[fatal()],
        google=[fatal(provider="google")],
        anthropic=[fatal(provider="anthropic")],
    )
    orchestrator = make_orchestrator(adapters)

    with pytest.raises(AllCandidatesExhausted) as exc_info:
        await orchestrator.generate(make_request())

    assert exc_info.value.rate_limited is False
    assert exc_info.value.user_message == "invalid api key"
    assert sum(len(a.calls) for a in adapters.values()) == 3


@pytest.mark.asyncio
async def test_defaults_filled_per_candidate_provider():
    adapters = three_adapters(openai=[fatal()], google=["ok"])
    orchestrator = make_orchestrator(adapters)

    await orchestrator.generate(make_request(temperature=0.2))

    openai_config = adapters["openai"].calls[0]
    google_config = adapters["google"].calls[0]
    assert openai_config.temperature == 0.2
    assert openai_config.presence_penalty == 0
    assert google_config.temperature == 0.2
    assert google_config.top_k == 40
    assert google_config.model == "gemini-1.5-flash"


@pytest.mark.asyncio
async def test_default_system_prompt_prepended_only_when_missing():
    adapters = three_adapters(openai=["a", "b"])
    orchestrator = make_orchestrator(adapters, default_system_prompt="Use markdown.")

    await orchestrator.generate(make_request())
    first = adapters["openai"].messages[0]
    assert first[0] == ChatMessage(role="system", content="Use markdown.")

    request = GenerationRequest(
        messages=[ChatMessage(role="system", content="Be terse."), ChatMessage(role="user", content="Hi")],
        config=GenerationConfig(provider="openai", model="gpt-4o"),
    )
    await orchestrator.generate(request)
    second = adapters["openai"].messages[1]
    assert [m.content for m in second] == ["Be terse.", "Hi"]


@pytest.mark.asyncio
async def test_request_is_not_mutated():
    adapters = three_adapters(openai=[fatal()], google=["ok"])
    orchestrator = make_orchestrator(adapters, default_system_prompt="sys")
    request = make_request()

    await orchestrator.generate(request)

    assert request.config.model == "gpt-4o"
    assert request.config.temperature is None
    assert len(request.messages) == 1


@pytest.mark.asyncio
async def test_deadline_turns_into_exhaustion():
    class SlowAdapter(ScriptedAdapter):
        async def _generate_text(self, messages, config):
            await asyncio.sleep(5)

    orchestrator = make_orchestrator({"openai": SlowAdapter("openai")}, deadline_s=0.05)

    with pytest.raises(AllCandidatesExhausted) as exc_info:
        await orchestrator.generate(make_request())
    assert isinstance(exc_info.value.last_error, DeadlineExceeded)


@pytest.mark.asyncio
async def test_cancel_token_stops_generation():
    token = CancelToken()
    token.cancel()
    adapters = three_adapters()
    orchestrator = make_orchestrator(adapters)

    with pytest.raises(GenerationCancelled):
        await orchestrator.generate(make_request(), cancel_token=token)
    assert all(a.calls == [] for a in adapters.values())


# --- Image generation ---


class ImageAdapter(ScriptedAdapter):
    def __init__(self, outcomes):
        super().__init__("openai")
        self.image_outcomes = list(outcomes)
        self.image_calls = 0

    async def generate_image(self, prompt, config):
        self.image_calls += 1
        outcome = self.image_outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return [GeneratedImage(url=outcome, revised_prompt=prompt)]


def image_request(model="dall-e-3", provider="openai"):
    return ImageGenerationRequest(
        prompt="a lighthouse at dusk",
        config=ImageGenerationConfig(provider=provider, model=model, size="1024x1024"),
    )


@pytest.mark.asyncio
async def test_image_generation_retries_then_succeeds():
    adapter = ImageAdapter([transient(model="dall-e-3"), "https://img.test/1.png"])
    orchestrator = make_orchestrator({"openai": adapter, "google": ScriptedAdapter("google")})

    response = await orchestrator.generate_image(image_request())

    assert [img.url for img in response.images] == ["https://img.test/1.png"]
    assert str(response.served_by) == "openai:dall-e-3"
    assert adapter.image_calls == 2


@pytest.mark.asyncio
async def test_image_generation_has_no_fallback():
    adapter = ImageAdapter([fatal(model="dall-e-3")])
    google = ScriptedAdapter("google")
    orchestrator = make_orchestrator({"openai": adapter, "google": google})

    with pytest.raises(AllCandidatesExhausted) as exc_info:
        await orchestrator.generate_image(image_request())

    assert exc_info.value.rate_limited is False
    assert adapter.image_calls == 1
    assert google.calls == []


@pytest.mark.asyncio
async def test_image_generation_requires_image_model():
    orchestrator = make_orchestrator({"openai": ImageAdapter([])})
    with pytest.raises(ValidationError):
        await orchestrator.generate_image(image_request(model="gpt-4o"))


@pytest.mark.asyncio
async def test_adapter_without_image_support_raises_capability_error():
    adapter = ScriptedAdapter("anthropic")
    with pytest.raises(CapabilityError):
        await adapter.generate_image("x", ImageGenerationConfig(provider="anthropic", model="claude-3-opus-20240229"))
