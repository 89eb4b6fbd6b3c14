"""
FastAPI application factory.
Creates the app with CORS, credential loading, and router registration.
Swagger UI available at /docs, ReDoc at /redoc.
"""
import sys
from pathlib import Path
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Ensure src/ is on the path
_src_dir = str(Path(__file__).parent.parent)
if _src_dir not in sys.path:
    sys.path.insert(0, _src_dir)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic for the FastAPI app."""
    import config
    from api.auth.credential_store import credential_store
    from utils.logger import get_logger

    logger = get_logger()
    logger.info(f"Initializing Order Sheet Intake API on port {config.API_PORT}", component="API")

    # Credentials set by a test or an earlier callback win over config
    if not credential_store.is_authenticated:
        try:
            credential_store.load_from_config()
        except Exception as e:
            logger.error(f"Could not load Google credentials: {e}", component="API")

    app.state.credential_store = credential_store
    logger.info(
        f"Header strategy: {config.HEADER_STRATEGY}, insertion policy: {config.INSERTION_POLICY}, "
        f"record format: {config.ORDER_RECORD_FORMAT}",
        component="API",
    )

    yield

    logger.info("Shutting down API server", component="API")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    import config

    app = FastAPI(
        title="Order Sheet Intake API",
        description=(
            "Accepts order submissions with receipt images, uploads the images to "
            "Google Drive and writes one row per order into the manager's tab."
        ),
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.API_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from api.routes.order_routes import router as order_router
    from api.routes.health_routes import router as health_router

    app.include_router(order_router, prefix="/api", tags=["Orders"])
    app.include_router(health_router, prefix="/health", tags=["Health"])

    @app.get("/", tags=["Root"])
    async def root():
        """API root - points at the docs."""
        return {
            "service": "Order Sheet Intake API",
            "version": "1.0.0",
            "docs": "/docs",
            "health": "/health",
        }

    return app
