import asyncio
import functools
import logging
from typing import AsyncGenerator, List, Optional, Tuple

from opentelemetry import trace

from chatcore.common.errors import (
    AllCandidatesExhausted,
    DeadlineExceeded,
    FatalUpstreamError,
    RetriesExhausted,
    ValidationError,
    is_rate_limit_error,
)
from chatcore.common.models import (
    Candidate,
    ChatMessage,
    GenerationConfig,
    GenerationRequest,
    GenerationResult,
    ImageGenerationRequest,
    ImageGenerationResponse,
    Modality,
    StreamEvent,
)
from chatcore.common.tracing import record_failure
from chatcore.engine.cancellation import CancelToken
from chatcore.engine.catalog import ModelCatalog
from chatcore.engine.fallback import FallbackPlanner, describe_plan
from chatcore.engine.retry import RetryExecutor, RetryPolicy
from chatcore.providers.base import ProviderAdapter
from chatcore.providers.registry import AdapterRegistry

logger = logging.getLogger("ChatCore")
tracer = trace.get_tracer(__name__)


async def _open_stream(adapter: ProviderAdapter, messages, config: GenerationConfig):
    """Starts an adapter stream and waits for its first delta.

    Returns the live iterator together with the first delta. Failures before
    the first delta propagate so the retry executor can classify them. A
    stream that ends without any text counts as a fatal candidate failure.
    """
    stream = adapter.stream_text(messages, config)
    try:
        first = await stream.__anext__()
    except StopAsyncIteration:
        await stream.aclose()
        raise FatalUpstreamError(
            "Upstream stream ended without content",
            provider=adapter.provider.value,
            model=config.model,
        ) from None
    except BaseException:
        await stream.aclose()
        raise
    return stream, first


class GenerationOrchestrator:
    """Serves generation requests across the fallback chain.

    Each candidate of the plan runs through the retry executor; the first
    success wins and is reported through ``served_by``. When every candidate
    fails, AllCandidatesExhausted carries the last error and whether it was
    caused by rate limiting. Candidates are tried back to back with no delay.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        adapters: AdapterRegistry,
        planner: FallbackPlanner,
        retry_executor: Optional[RetryExecutor] = None,
        default_system_prompt: Optional[str] = None,
        deadline_s: Optional[float] = None,
    ):
        self.catalog = catalog
        self.adapters = adapters
        self.planner = planner
        self.retry_executor = retry_executor or RetryExecutor()
        self.default_system_prompt = default_system_prompt
        self.deadline_s = deadline_s or None

    @classmethod
    def from_config(cls, config_manager, http_client=None, adapters: Optional[AdapterRegistry] = None):
        config = config_manager.get_active_config()
        generation_settings = config["generation_settings"]
        catalog = ModelCatalog.from_config(config_manager)
        return cls(
            catalog=catalog,
            adapters=adapters or AdapterRegistry.from_config(config_manager, http_client=http_client),
            planner=FallbackPlanner(catalog, config["fallback_candidates"]),
            retry_executor=RetryExecutor(RetryPolicy.from_settings(config["retry_settings"])),
            default_system_prompt=generation_settings.get("default_system_prompt"),
            deadline_s=generation_settings.get("request_deadline_s"),
        )

    # --- Request preparation ---

    def _validate(self, config: GenerationConfig, modality: Modality) -> Candidate:
        candidate = Candidate(provider=config.provider, model=config.model)
        if self.catalog.get_model(candidate.provider, candidate.model) is None:
            raise ValidationError(f"Invalid provider/model combination: {candidate}")
        if not self.catalog.supports(candidate, modality):
            raise ValidationError(
                f"Model {candidate} does not support {modality.value} generation"
            )
        return candidate

    def _with_system_prompt(self, messages: List[ChatMessage]) -> List[ChatMessage]:
        if not self.default_system_prompt or any(m.role == "system" for m in messages):
            return list(messages)
        return [ChatMessage(role="system", content=self.default_system_prompt), *messages]

    def validate(self, request: GenerationRequest) -> Candidate:
        return self._validate(request.config, Modality.TEXT)

    def prepare(self, request: GenerationRequest) -> Tuple[List[ChatMessage], List[Candidate]]:
        """Validates the request and returns the final message list and candidate chain."""
        requested = self._validate(request.config, Modality.TEXT)
        return self._with_system_prompt(request.messages), self.planner.plan(requested)

    def _config_for(self, request: GenerationRequest, candidate: Candidate) -> GenerationConfig:
        return request.config.for_candidate(candidate).with_defaults(
            self.catalog.default_config(candidate.provider)
        )

    async def _with_deadline(self, awaitable, label: str):
        if not self.deadline_s:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self.deadline_s)
        except asyncio.TimeoutError:
            error = DeadlineExceeded(f"{label} exceeded the {self.deadline_s}s request deadline")
            logger.error(str(error))
            raise AllCandidatesExhausted(error) from None

    # --- Text generation ---

    async def generate(
        self, request: GenerationRequest, cancel_token: Optional[CancelToken] = None
    ) -> GenerationResult:
        """Generates a completion, falling back across providers as needed.

        Raises:
            ValidationError: The requested pair is not in the catalog. No upstream call is made.
            AllCandidatesExhausted: Every candidate failed (or the deadline passed).
            GenerationCancelled: ``cancel_token`` fired.
        """
        messages, chain = self.prepare(request)
        with tracer.start_as_current_span("generate") as span:
            span.set_attribute("chatcore.requested", f"{request.config.provider.value}:{request.config.model}")
            span.set_attribute("chatcore.plan", describe_plan(chain))
            result = await self._with_deadline(
                self._run_chain(request, messages, chain, cancel_token), "generate"
            )
            span.set_attribute("chatcore.served_by", str(result.served_by))
            return result

    async def _run_chain(
        self,
        request: GenerationRequest,
        messages: List[ChatMessage],
        chain: List[Candidate],
        cancel_token: Optional[CancelToken],
    ) -> GenerationResult:
        last_error: Optional[Exception] = None
        for candidate in chain:
            adapter = self.adapters.get(candidate.provider)
            config = self._config_for(request, candidate)
            with tracer.start_as_current_span("candidate_attempt") as span:
                span.set_attribute("chatcore.candidate", str(candidate))
                try:
                    result = await self.retry_executor.execute(
                        functools.partial(adapter.generate_text, messages, config),
                        label=str(candidate),
                        cancel_token=cancel_token,
                    )
                except (FatalUpstreamError, RetriesExhausted) as e:
                    last_error = e
                    record_failure(span, e)
                    self._log_candidate_failure(candidate, e)
                    continue
                span.set_attribute("chatcore.outcome", "success")

            if candidate != chain[0]:
                logger.info(f"Request for {chain[0]} served by fallback {candidate}")
            return result.model_copy(update={"served_by": candidate})

        raise AllCandidatesExhausted(last_error, rate_limited=is_rate_limit_error(last_error))

    @staticmethod
    def _log_candidate_failure(candidate: Candidate, error: Exception) -> None:
        upstream = error.last_error if isinstance(error, RetriesExhausted) else error
        logger.error(
            f"Candidate {candidate} failed ({upstream.classification}, "
            f"status={upstream.status_code}, rate_limited={upstream.rate_limited}): {upstream.message}",
            extra={"candidate": str(candidate)},
        )

    # --- Native streaming ---

    async def stream(
        self, request: GenerationRequest, cancel_token: Optional[CancelToken] = None
    ) -> AsyncGenerator[StreamEvent, None]:
        """Streams provider deltas as ``delta`` events followed by one ``end`` event.

        Fallback to the next candidate only happens while nothing has been
        yielded. Once a delta went out, an upstream error propagates as is
        and the caller keeps whatever it has received.
        """
        messages, chain = self.prepare(request)
        with tracer.start_as_current_span("stream") as span:
            span.set_attribute("chatcore.plan", describe_plan(chain))
            last_error: Optional[Exception] = None
            for candidate in chain:
                adapter = self.adapters.get(candidate.provider)
                config = self._config_for(request, candidate)
                try:
                    stream, first = await self.retry_executor.execute(
                        functools.partial(_open_stream, adapter, messages, config),
                        label=str(candidate),
                        cancel_token=cancel_token,
                    )
                except (FatalUpstreamError, RetriesExhausted) as e:
                    last_error = e
                    record_failure(span, e)
                    self._log_candidate_failure(candidate, e)
                    continue

                span.set_attribute("chatcore.served_by", str(candidate))
                yield StreamEvent(type="delta", content=first, served_by=candidate)
                try:
                    async for delta in stream:
                        if cancel_token is not None:
                            cancel_token.raise_if_cancelled()
                        yield StreamEvent(type="delta", content=delta, served_by=candidate)
                finally:
                    await stream.aclose()
                yield StreamEvent(type="end", served_by=candidate, finish_reason="stop")
                return

            raise AllCandidatesExhausted(last_error, rate_limited=is_rate_limit_error(last_error))

    # --- Image generation ---

    async def generate_image(
        self, request: ImageGenerationRequest, cancel_token: Optional[CancelToken] = None
    ) -> ImageGenerationResponse:
        """Generates images with the requested model only; there is no fallback chain."""
        candidate = self._validate(request.config, Modality.IMAGE)
        adapter = self.adapters.get(candidate.provider)
        with tracer.start_as_current_span("generate_image") as span:
            span.set_attribute("chatcore.candidate", str(candidate))
            try:
                images = await self._with_deadline(
                    self.retry_executor.execute(
                        functools.partial(adapter.generate_image, request.prompt, request.config),
                        label=str(candidate),
                        cancel_token=cancel_token,
                    ),
                    "generate_image",
                )
            except (FatalUpstreamError, RetriesExhausted) as e:
                record_failure(span, e)
                self._log_candidate_failure(candidate, e)
                raise AllCandidatesExhausted(e, rate_limited=is_rate_limit_error(e)) from e
        return ImageGenerationResponse(images=images, served_by=candidate)
