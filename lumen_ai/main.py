"""
Lumen AI: FastAPI Application Entry Point

This module initializes the FastAPI application and defines the endpoints:
- /health: Health check endpoint
- /config: Read and save AI settings, test provider connections
- /models: Model registry with prices
- /chat: Start, cancel and stream chat requests

The application uses a lifespan context manager to:
1. Load configuration and configure logging at startup
2. Report which provider keys are available
3. Cancel running requests and close HTTP connections on shutdown
"""

from contextlib import asynccontextmanager
import json
import logging
import time

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from lumen_ai import __version__
from lumen_ai.config import configure_logging, get_settings
from lumen_ai.errors import BudgetExceededError, MissingCredentialError
from lumen_ai.registry import AIProvider, get_model_registry
from lumen_ai.schemas.chat import (
    CancelChatResponse,
    ChatRequest,
    ComponentHealth,
    ConfigResponse,
    ConnectionTestRequest,
    ConnectionTestResponse,
    ErrorCodes,
    ErrorResponse,
    HealthResponse,
    SaveConfigRequest,
    SaveConfigResponse,
    StartChatResponse,
)
from lumen_ai.service import AIService, get_ai_service, reset_ai_service

logger = logging.getLogger(__name__)

_start_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for startup/shutdown events.

    On startup:
    - Loads configuration from environment
    - Configures logging
    - Logs which provider keys are available

    On shutdown:
    - Cancels queued and running requests
    - Closes provider HTTP connections
    """
    settings = get_settings()
    configure_logging(settings)

    logger.info("=" * 60)
    logger.info("Lumen AI starting up...")
    logger.info("=" * 60)
    logger.info(f"Data directory: {settings.data_dir}")
    logger.info(f"Max concurrent streams: {settings.max_concurrent_streams}")
    logger.info(f"Request timeout: {settings.request_timeout_seconds:g}s")
    logger.info(
        f"Retry: {settings.retry_max_attempts} attempts, "
        f"{settings.retry_base_delay_seconds:g}s base, {settings.retry_max_delay_seconds:g}s cap"
    )
    logger.info(f"Debug mode: {'enabled' if settings.debug else 'disabled'}")

    service = get_ai_service()
    for provider in AIProvider:
        configured = service.secret_store.has_api_key(provider)
        logger.info(f"{provider.value} API key: {'configured' if configured else 'not configured'}")

    global _start_time
    _start_time = time.time()

    logger.info("=" * 60)
    logger.info("Lumen AI ready to accept requests")

    yield  # Application runs here

    logger.info("Lumen AI shutting down...")
    await service.aclose()
    reset_ai_service()


app = FastAPI(
    title="Lumen AI",
    description="Streaming chat gateway for OpenAI, Anthropic, xAI, OpenRouter and OpenClaw",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error={"code": code, "message": message}).model_dump(
            exclude_none=True
        ),
    )


@app.get("/")
async def root():
    """
    Root endpoint with API information.
    """
    return {
        "name": "Lumen AI",
        "description": "Streaming chat gateway",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "config": "/config",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check system health and component status.",
)
async def health_check(service: AIService = Depends(get_ai_service)):
    """
    Health check endpoint for monitoring.

    Checks:
    - Dispatcher load (running and queued requests)
    - Settings store readability
    - Registry availability
    """
    components = []
    overall_status = "healthy"

    dispatcher = service.dispatcher
    components.append(
        ComponentHealth(
            name="dispatcher",
            status="healthy",
            message=(
                f"{dispatcher.running_count}/{dispatcher.max_concurrent} running, "
                f"{dispatcher.queued_count} queued"
            ),
        )
    )

    try:
        service.settings_store.read()
        components.append(
            ComponentHealth(name="settings_store", status="healthy")
        )
    except Exception as e:
        components.append(
            ComponentHealth(name="settings_store", status="unhealthy", message=str(e))
        )
        overall_status = "degraded"

    model_count = len(get_model_registry().list_models())
    components.append(
        ComponentHealth(
            name="registry",
            status="healthy",
            message=f"{model_count} models registered",
        )
    )

    uptime = time.time() - _start_time if _start_time > 0 else 0.0

    return HealthResponse(
        status=overall_status,
        version=__version__,
        components=components,
        uptime_seconds=uptime,
    )


@app.get("/config", response_model=ConfigResponse)
async def get_config(service: AIService = Depends(get_ai_service)):
    """
    Current AI settings, this month's usage and the budget position.

    API keys are never returned; has_api_key reports whether one is stored.
    """
    return service.get_config()


@app.put("/config", response_model=SaveConfigResponse)
async def save_config(
    request: SaveConfigRequest, service: AIService = Depends(get_ai_service)
):
    """Save AI settings and optionally an API key for the chosen provider."""
    return service.save_config(request)


@app.post("/config/test-connection", response_model=ConnectionTestResponse)
async def run_connection_test(
    request: ConnectionTestRequest, service: AIService = Depends(get_ai_service)
):
    """
    Send a short probe request to a provider.

    Always answers 200; ok=False carries the failure message.
    """
    return await service.test_connection(request.provider)


@app.get("/models")
async def list_models():
    """
    List all registered models with their prices.

    Includes the default model list for each provider, which is
    what settings UIs offer for selection.
    """
    registry = get_model_registry()

    return {
        "models": [
            {
                "model_id": model.model_id,
                "provider": model.provider.value,
                "cost_per_1m_prompt": model.cost_per_1m_prompt_tokens,
                "cost_per_1m_completion": model.cost_per_1m_completion_tokens,
                "default": model.default,
            }
            for model in registry.list_models()
        ],
        "available_models": {
            provider.value: registry.available_models(provider) for provider in AIProvider
        },
        "total_models": len(registry.list_models()),
    }


@app.post(
    "/chat",
    status_code=202,
    response_model=StartChatResponse,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Start a chat",
    description="Admit a streamed chat request. Events are read from /chat/{request_id}/events.",
)
async def start_chat(request: ChatRequest, service: AIService = Depends(get_ai_service)):
    """
    Start a streamed chat request.

    Flow:
    1. Check the API key for the selected provider
    2. Check the monthly budget
    3. Queue the request and return its id

    The request runs in the background; its tokens and completion are
    delivered as server-sent events.
    """
    try:
        return service.start_chat(request)
    except MissingCredentialError as e:
        return _error_response(400, e.code, e.message)
    except BudgetExceededError as e:
        return _error_response(402, e.code, e.message)


@app.delete("/chat/{request_id}", response_model=CancelChatResponse)
async def cancel_chat(request_id: str, service: AIService = Depends(get_ai_service)):
    """Cancel a queued or running chat. Unknown ids are ignored."""
    return service.cancel_chat(request_id)


@app.get(
    "/chat/{request_id}/events",
    summary="Stream chat events",
    description="Server-sent events for a chat, ending with its done event.",
)
async def stream_chat_events(
    request_id: str, service: AIService = Depends(get_ai_service)
):
    """
    Stream a chat's events as text/event-stream.

    Events published before the client connected are replayed first.
    The stream closes after the done event.
    """
    known = service.events.knows(request_id) or request_id in service.dispatcher.active_request_ids
    if not known:
        raise HTTPException(
            status_code=404,
            detail={"code": "NOT_FOUND", "message": f"Unknown request: {request_id}"},
        )

    subscription = service.events.subscribe(request_id)

    async def event_stream():
        try:
            async for event in subscription:
                payload = event.model_dump(mode="json", exclude_none=True)
                yield f"data: {json.dumps(payload)}\n\n"
        finally:
            subscription.close()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Returns a consistent error response format with the first validation
    error's details for client-side error handling.
    """
    errors = exc.errors()
    first_error = errors[0] if errors else {}

    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": ErrorCodes.VALIDATION_ERROR,
                "message": first_error.get("msg", "Validation failed"),
                "field": ".".join(str(loc) for loc in first_error.get("loc", [])),
            }
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(
    request: Request, exc: HTTPException
) -> JSONResponse:
    """
    Handle HTTP exceptions with consistent format.
    """
    detail = exc.detail
    if isinstance(detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": detail})
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "HTTP_ERROR", "message": str(detail)}},
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Logs the full exception for debugging and returns a generic error
    response to avoid leaking implementation details.
    """
    logger.exception("Unhandled exception")
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": ErrorCodes.INTERNAL_ERROR,
                "message": "An unexpected error occurred",
            }
        },
    )


def run() -> None:
    """Serve the app with uvicorn using HOST, PORT and DEBUG from settings."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "lumen_ai.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
