import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from chatcore.api.middleware.rate_limit import limiter
from chatcore.api.routes import chat, models
from chatcore.common import logging_config, tracing
from chatcore.common.errors import (
    AllCandidatesExhausted,
    CapabilityError,
    InsufficientCreditsError,
    ValidationError,
)
from chatcore.config import ConfigManager
from chatcore.engine.background import ConversationIndexer
from chatcore.engine.costs import UnlimitedCreditLedger
from chatcore.engine.orchestrator import GenerationOrchestrator
from chatcore.engine.session import StreamEmitter

logging_config.setup_json_logging()
logging_config.install_key_filters("ChatCore")
logger = logging.getLogger("ChatCore")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Builds the generation stack on startup and releases it on shutdown.

    Anything already placed on ``app.state`` by ``create_app`` (config,
    http client, credit ledger, index sink) is used as given.
    """
    logger.info("Initializing ChatCore...")
    state = app.state
    if getattr(state, "config_manager", None) is None:
        state.config_manager = ConfigManager()
    state.config = state.config_manager.get_active_config()
    config = state.config

    owns_http_client = getattr(state, "http_client", None) is None
    if owns_http_client:
        logger.info("Creating a shared httpx.AsyncClient...")
        state.http_client = httpx.AsyncClient(
            timeout=config["generation_settings"]["provider_timeout_s"]
        )

    state.orchestrator = GenerationOrchestrator.from_config(
        state.config_manager, http_client=state.http_client
    )
    state.catalog = state.orchestrator.catalog
    state.emitter = StreamEmitter.from_config(state.config_manager, state.orchestrator)
    state.indexer = ConversationIndexer(
        state.orchestrator.adapters,
        dict(config["indexing_settings"]),
        sink=getattr(state, "index_sink", None),
    )
    if getattr(state, "credit_ledger", None) is None:
        state.credit_ledger = UnlimitedCreditLedger()

    if not state.catalog.list_providers():
        logger.warning("No provider credentials configured. Every generation request will be rejected.")
    logger.info("Application initialized successfully.")
    yield
    logger.info("Shutting down...")

    await state.indexer.drain()
    if owns_http_client:
        logger.info("Closing the shared httpx.AsyncClient...")
        await state.http_client.aclose()
    logger.info("Application stopped.")


async def _validation_error_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _exhausted_handler(request: Request, exc: AllCandidatesExhausted):
    return JSONResponse(
        status_code=503,
        content={"detail": exc.user_message, "rate_limited": exc.rate_limited},
    )


async def _credits_handler(request: Request, exc: InsufficientCreditsError):
    return JSONResponse(
        status_code=402,
        content={
            "detail": "Insufficient credits",
            "model": exc.model,
            "cost": exc.cost,
            "balance": exc.balance,
        },
    )


def create_app(
    config_manager: Optional[ConfigManager] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    credit_ledger=None,
    index_sink=None,
    instrument: bool = True,
) -> FastAPI:
    app = FastAPI(title="ChatCore", version="1.0.0", lifespan=lifespan)
    app.state.config_manager = config_manager
    app.state.http_client = http_client
    app.state.credit_ledger = credit_ledger
    app.state.index_sink = index_sink

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(CapabilityError, _validation_error_handler)
    app.add_exception_handler(AllCandidatesExhausted, _exhausted_handler)
    app.add_exception_handler(InsufficientCreditsError, _credits_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(models.router)
    app.include_router(chat.router)

    @app.get("/health")
    async def health(request: Request):
        catalog = getattr(request.app.state, "catalog", None)
        providers = sorted(p.value for p in catalog.list_providers()) if catalog else []
        return {"status": "ok", "providers": providers}

    if instrument:
        tracing.setup_tracing()
        FastAPIInstrumentor.instrument_app(app)
    return app


app = create_app()
