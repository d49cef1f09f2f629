from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration

from .api.routes import chat as chat_routes
from .health import health_checker
from .logging_config import SERVICE_NAME, SERVICE_VERSION, configure_structlog, get_logger
from .metrics import PrometheusMiddleware, get_metrics
from .openai_async import close_async_client
from .settings import settings
from .utils import add_cors, add_request_id_tracing, add_security_headers

# Configure structured logging (must be done before any logging calls)
configure_structlog(json_logs=not settings.DEBUG)

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        release=settings.SENTRY_RELEASE or f"{SERVICE_NAME}@dev",
        integrations=[FastApiIntegration()],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    await close_async_client()


app = FastAPI(
    title="Cavens Assistant API",
    version=SERVICE_VERSION,
    description="Conversational event and club discovery with streamed answers",
    lifespan=lifespan,
)
add_cors(app)
add_security_headers(app)
add_request_id_tracing(app)
app.add_middleware(PrometheusMiddleware)

API_PREFIX = "/v1"

app.include_router(chat_routes.router, prefix=API_PREFIX)


@app.get("/health")
async def health():
    """Return service health including collaborator configuration."""
    health_status = await health_checker.check_all()
    status_code = 200 if health_status["status"] == "healthy" else 503
    body = {
        "status": health_status["status"],
        "timestamp": health_status.get("timestamp"),
        "checks": health_status.get("checks", {}),
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }
    return JSONResponse(status_code=status_code, content=body)


@app.get("/metrics", include_in_schema=False)
def metrics():
    return get_metrics()


logger.info("app_started", service=SERVICE_NAME, llm_enabled=settings.llm_enabled)
