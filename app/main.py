from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from app.config import settings
from app.database import SessionLocal
from app.api.v1 import auth, notifications, invitations
from app.services.errors import CollaborationError
from app.services.notification_center import NotificationHub
from app.services.store import CollaborationStore
import logging

# Configure logging
if not settings.DEBUG:
    from app.utils.logging_config import root_logger  # noqa: F401
logger = logging.getLogger(__name__)


def create_app(session_factory=SessionLocal, refresh_seconds=None, idle_seconds=None) -> FastAPI:
    """Build the API. Tests pass their own session factory."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.notification_hub = NotificationHub(
            CollaborationStore(session_factory),
            refresh_seconds=refresh_seconds,
            idle_seconds=idle_seconds,
        )
        app.state.notification_hub.start_sweeper()
        logger.info(f"{settings.APP_NAME} started")
        yield
        app.state.notification_hub.close_all()
        logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Project collaboration API: notifications and project invitations",
        version=settings.APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # CORS Middleware
    if settings.ENVIRONMENT == "production":
        origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS else []
        if not origins:
            logger.warning("No ALLOWED_ORIGINS set in production!")
    else:
        # In development, allow all
        origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include Routers
    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["Notifications"])
    app.include_router(invitations.router, prefix="/api/v1/invitations", tags=["Invitations"])

    @app.get("/")
    def root():
        """Root endpoint"""
        return {
            "message": f"{settings.APP_NAME} is running",
            "version": settings.APP_VERSION,
            "docs": "/docs",
        }

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": settings.APP_NAME,
            "sessions": len(app.state.notification_hub),
        }

    return app


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors"""
        def sanitize_error(error):
            """Convert error dict to JSON-serializable format"""
            if isinstance(error, dict):
                return {k: sanitize_error(v) for k, v in error.items()}
            elif isinstance(error, list):
                return [sanitize_error(item) for item in error]
            elif isinstance(error, bytes):
                return error.decode('utf-8', errors='replace')
            elif isinstance(error, (str, int, float, bool, type(None))):
                return error
            else:
                return str(error)

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "message": "Validation error",
                "error": {
                    "code": "VALIDATION_ERROR",
                    "details": sanitize_error(exc.errors())
                }
            }
        )

    @app.exception_handler(CollaborationError)
    async def collaboration_exception_handler(request: Request, exc: CollaborationError):
        """Handle store, subscription and action errors"""
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "message": exc.message,
                "error": {"code": exc.code}
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "message": "Internal server error",
                "error": {
                    "code": "SERVER_ERROR",
                    "details": str(exc) if settings.DEBUG else "An error occurred"
                }
            }
        )


app = create_app()
