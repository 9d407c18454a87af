from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Routers
from .routers.comps import router as comps_router
from .routers.valuation import router as valuation_router

# Core modules
from .core.config import settings
from .core.errors import ProviderConfigurationError, StoreUnavailableError
from .core.logging import configure_logging, CorrelationIdMiddleware
from .core.metrics import PromMiddleware, metrics_endpoint
from .services.valuation_service import ValuationService

def create_app(service: ValuationService | None = None) -> FastAPI:
    """
    App factory so tests and ASGI servers can instantiate cleanly.
    Pass a prebuilt service to swap stores/providers (tests do).
    """
    configure_logging()  # Set up JSON logs

    app = FastAPI(
        title="Comparable Sales & ARV API",
        version="1.0.0",
        description="Quota-aware comps waterfall with caching, retries, weighted ARV and historical checks.",
    )
    app.state.service = service or ValuationService(settings)

    # CORS
    allow_origins = [o.strip() for o in settings.ALLOW_ORIGINS.split(",")] if settings.ALLOW_ORIGINS else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag","X-Request-Id"],
    )

    # Observability middlewares
    app.add_middleware(CorrelationIdMiddleware)  # Adds/propagates X-Request-Id
    if settings.PROMETHEUS_ENABLED:
        app.add_middleware(PromMiddleware)       # Records req/latency metrics

    # A missing credential is the one error the caller has to act on
    @app.exception_handler(ProviderConfigurationError)
    async def provider_configuration_error(request: Request, exc: ProviderConfigurationError):
        return JSONResponse(status_code=503, content={"detail": str(exc), "provider": exc.provider})

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable(request: Request, exc: StoreUnavailableError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    # Meta routes
    @app.get("/v1/health", tags=["meta"])
    def health():
        return {"status": "ok"}

    @app.get("/v1/ping", tags=["meta"])
    def ping():
        return {"pong": True}

    if settings.PROMETHEUS_ENABLED:
        # Standard Prometheus scrape endpoint
        app.add_route("/v1/metrics", metrics_endpoint, methods=["GET"])

    # Business routes
    app.include_router(comps_router, prefix="/v1", tags=["comps"])
    app.include_router(valuation_router, prefix="/v1", tags=["valuation"])

    return app

app = create_app()
