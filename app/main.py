"""
Main FastAPI application entry point.
Initializes the application with middleware, routes, tracing and metrics.
"""
from uuid import uuid4
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware
from core.config import settings
from db.database import engine, init_db

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

from prometheus_fastapi_instrumentator import Instrumentator

from core.logging_config import configure_logging, get_logger
configure_logging(service_name=settings.service_name, level=settings.log_level, enable_json=settings.log_json)

logger = get_logger(__name__)


def setup_tracing():
    """
    Configure OpenTelemetry tracing with an OTLP/HTTP exporter.

    Only runs when tracing is enabled; otherwise spans go to the default
    no-op provider and trace_id is absent from logs.
    """
    resource = Resource.create({
        "service.name": settings.service_name,
        "service.version": "1.0.0"
    })

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))
    trace.set_tracer_provider(tracer_provider)

    logger.info(f"OpenTelemetry tracing initialized, exporting to {settings.otlp_endpoint}")
    return tracer_provider


if settings.tracing_enabled:
    setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Creates the schema on startup.
    """
    logger.info("Starting UltimateApp API...")
    init_db()
    yield
    logger.info("Shutting down UltimateApp API...")


# Create FastAPI application
app = FastAPI(
    title="UltimateApp API",
    description="Wallet, food, ride and real-time direct messaging backend",
    version="1.0.0",
    lifespan=lifespan
)

FastAPIInstrumentor.instrument_app(app)
SQLAlchemyInstrumentor().instrument(engine=engine)

# Exposes /metrics with HTTP request metrics plus the gateway's own counters
Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Metrics"])


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add unique request_id to each request.
    The request_id is included in logs for request tracing.
    """
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id

        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(f"[{request_id}] Response: {response.status_code}")
        return response


app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    """Unexpected database failures surface as a generic 500."""
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Server error."}
    )


@app.get("/", tags=["Health"])
async def root():
    """Service banner."""
    return {
        "message": "UltimateApp API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready",
        "websocket": "/ws"
    }


# Register endpoint routers
from api.endpoints import (
    auth_router, wallet_router, food_router, ride_router,
    profile_router, addresses_router, chat_router, websocket_router
)
from api.health import router as health_router

app.include_router(health_router)
app.include_router(auth_router, tags=["Authentication"])
app.include_router(wallet_router, prefix="/wallet", tags=["Wallet"])
app.include_router(food_router, prefix="/food", tags=["Food"])
app.include_router(ride_router, prefix="/ride", tags=["Ride"])
app.include_router(profile_router, prefix="/profile", tags=["Profile"])
app.include_router(addresses_router, prefix="/addresses", tags=["Addresses"])
app.include_router(chat_router, prefix="/api", tags=["Chat"])
app.include_router(websocket_router, tags=["WebSocket"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
