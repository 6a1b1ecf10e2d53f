"""
Main FastAPI application entry point
"""
import warnings

# Suppress pkg_resources deprecation warning from opentelemetry
warnings.filterwarnings('ignore', message='.*pkg_resources is deprecated.*', category=UserWarning)
# Suppress OpenTelemetry shutdown warnings (spans dropped after shutdown is normal)
warnings.filterwarnings('ignore', message='.*Already shutdown.*', category=UserWarning)

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException as FastAPIHTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from intakeflow import __version__
from intakeflow.api.routes import audit, health, intake, metrics
from intakeflow.core.config import get_settings
from intakeflow.core.database import init_db
from intakeflow.core.logging_config import LoggingConfig
from intakeflow.core.middleware import LoggingContextMiddleware, MetricsMiddleware
from intakeflow.core.tracing import configure_tracing, shutdown_tracing

# Configure logging first
LoggingConfig.configure()

logger = LoggingConfig.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for FastAPI app"""
    # Startup
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode...")
    configure_tracing(app)

    if settings.audit_sink == "database":
        init_db()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    shutdown_tracing()


_settings = get_settings()
app = FastAPI(
    title=_settings.app_name,
    description="Universal intake and routing pipeline",
    version=__version__,
    lifespan=lifespan,
)

# Add logging context middleware (before CORS to capture all requests)
app.add_middleware(LoggingContextMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to log all unhandled errors"""
    # Don't handle HTTPException - let FastAPI handle it
    if isinstance(exc, FastAPIHTTPException):
        raise exc

    logger.error(
        "Unhandled exception",
        exc_info=True,
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "type": type(exc).__name__
        }
    )


app.include_router(intake.router)
app.include_router(audit.router)
app.include_router(health.router)
app.include_router(metrics.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {"service": _settings.app_name, "version": __version__, "docs": "/docs"}
