import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from chatcore.common.errors import RetriesExhausted, UpstreamError

logger = logging.getLogger("ChatCore")

_configured = False


def _flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


def setup_tracing(service_name: str = "ChatCore"):
    """
    Installs the global TracerProvider once per process.

    Exporters:
    1. ENABLE_CONSOLE_TRACING=true -> spans printed to stdout.
    2. ENABLE_FILE_TRACING=true -> spans appended to CHATCORE_TRACE_FILE (traces.json).
    3. Neither -> spans are recorded but not exported.
    """
    global _configured
    if _configured:
        return trace.get_tracer(__name__)

    provider = TracerProvider(resource=Resource(attributes={"service.name": service_name}))

    if _flag("ENABLE_CONSOLE_TRACING"):
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    elif _flag("ENABLE_FILE_TRACING"):
        trace_path = os.getenv("CHATCORE_TRACE_FILE", "traces.json")
        try:
            trace_file = open(trace_path, "a")
        except OSError as e:
            logger.error(f"File tracing disabled, cannot open {trace_path}: {e}")
        else:
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter(out=trace_file)))

    trace.set_tracer_provider(provider)
    _configured = True
    return trace.get_tracer(__name__)


def record_failure(span, error: Exception) -> None:
    """Tags a candidate span with the normalized cause of its failure."""
    upstream = error.last_error if isinstance(error, RetriesExhausted) else error
    span.set_attribute("chatcore.outcome", "failed")
    if isinstance(error, RetriesExhausted):
        span.set_attribute("chatcore.attempts", error.attempts)
    if isinstance(upstream, UpstreamError):
        span.set_attribute("chatcore.error.class", upstream.classification)
        span.set_attribute("chatcore.error.rate_limited", upstream.rate_limited)
        if upstream.status_code is not None:
            span.set_attribute("chatcore.error.status_code", upstream.status_code)
