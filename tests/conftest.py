from typing import Dict, List, Optional

import pytest

from chatcore.common.errors import FatalUpstreamError, TransientUpstreamError
from chatcore.common.models import (
    ChatMessage,
    GenerationConfig,
    GenerationRequest,
    GenerationResult,
    Provider,
    Usage,
)
from chatcore.config.base.models import MODEL_REGISTRY, PROVIDER_DEFAULTS
from chatcore.engine.catalog import ModelCatalog
from chatcore.engine.fallback import FallbackPlanner
from chatcore.engine.orchestrator import GenerationOrchestrator
from chatcore.engine.retry import RetryExecutor, RetryPolicy
from chatcore.providers.base import ProviderAdapter
from chatcore.providers.registry import AdapterRegistry

DEFAULT_FALLBACKS = [
    ("google", "gemini-1.5-flash"),
    ("anthropic", "claude-3-5-haiku-20241022"),
]


def transient(provider="openai", model="gpt-4o", status_code=503, rate_limited=False):
    return TransientUpstreamError(
        "upstream unavailable" if not rate_limited else "rate limit exceeded",
        provider=provider,
        model=model,
        status_code=429 if rate_limited else status_code,
        rate_limited=rate_limited,
    )


def fatal(provider="openai", model="gpt-4o", status_code=401):
    return FatalUpstreamError("invalid api key", provider=provider, model=model, status_code=status_code)


class ScriptedAdapter(ProviderAdapter):
    """Adapter that replays a fixed script of outcomes, one per call.

    Text outcomes are strings (success) or exceptions. Stream outcomes are
    lists whose items are deltas or exceptions raised at that point.
    """

    def __init__(self, provider: Provider, script: Optional[list] = None, stream_script: Optional[list] = None):
        super().__init__(api_key="test-key", api_base="http://upstream.test")
        self.provider = Provider(provider)
        self.script = list(script or [])
        self.stream_script = list(stream_script or [])
        self.calls: List[GenerationConfig] = []
        self.messages: List[List[ChatMessage]] = []

    async def _generate_text(self, messages, config):
        self.calls.append(config)
        self.messages.append(list(messages))
        outcome = self.script.pop(0) if self.script else "ok"
        if isinstance(outcome, Exception):
            raise outcome
        return GenerationResult(
            content=outcome,
            usage=Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5),
            finish_reason="stop",
            served_by=self._candidate(config),
        )

    async def _stream_text(self, messages, config):
        self.calls.append(config)
        outcome = self.stream_script.pop(0) if self.stream_script else ["ok"]
        if isinstance(outcome, Exception):
            raise outcome
        for item in outcome:
            if isinstance(item, Exception):
                raise item
            yield item


async def no_sleep(delay, token=None):
    return None


def make_catalog(providers=("openai", "anthropic", "google")) -> ModelCatalog:
    return ModelCatalog(MODEL_REGISTRY, providers, PROVIDER_DEFAULTS)


def make_orchestrator(
    adapters: Dict[str, ProviderAdapter],
    fallbacks=DEFAULT_FALLBACKS,
    retry_executor: Optional[RetryExecutor] = None,
    default_system_prompt: Optional[str] = None,
    deadline_s: Optional[float] = None,
) -> GenerationOrchestrator:
    catalog = make_catalog(adapters.keys())
    return GenerationOrchestrator(
        catalog=catalog,
        adapters=AdapterRegistry({Provider(p): a for p, a in adapters.items()}),
        planner=FallbackPlanner(catalog, fallbacks),
        retry_executor=retry_executor or RetryExecutor(RetryPolicy(), sleep=no_sleep, jitter=lambda a, b: 0),
        default_system_prompt=default_system_prompt,
        deadline_s=deadline_s,
    )


def make_request(provider="openai", model="gpt-4o", content="Hi", **config) -> GenerationRequest:
    return GenerationRequest(
        messages=[ChatMessage(role="user", content=content)],
        config=GenerationConfig(provider=provider, model=model, **config),
    )


@pytest.fixture
def request_factory():
    return make_request
