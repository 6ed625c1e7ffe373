"""FastAPI application factory and main entry point."""
import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from repokit import __version__
from repokit.core.cache import check_cache_connection, close_cache
from repokit.core.config import settings
from repokit.core.database import check_database_connection, close_database
from repokit.core.logging import configure_logging, get_logger
from repokit.core.middleware import RequestContextMiddleware
from repokit.core.tracing import configure_tracing, instrument_fastapi_app
from repokit.repositories.base import ConfigurationError, NotFoundError, ValidationError
from repokit.repositories.options import PaginateOptions, RepositoryOptions
from repokit.repositories.permissions import PermissionRepository
from repokit.repositories.users import UserRepository
from repokit.schemas import ErrorResponse, PermissionCreate, PermissionRead, UserPage, UserRead
from repokit.services.permissions import CreatePermissionService, PermissionData
from repokit.services.users import PaginateUserService

# Configure logging on module import
configure_logging()
configure_tracing()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan context manager for startup/shutdown events."""
    logger.info("Starting repokit API", version=__version__, environment=settings.environment)

    yield

    logger.info("Shutting down repokit API")
    await close_database()
    await close_cache()


def get_user_repository() -> UserRepository:
    return UserRepository()


def get_permission_repository() -> PermissionRepository:
    return PermissionRepository()


def _error(status_code: int, error: str, message: str, **details: Any) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Translate repository errors into JSON error responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info("Rejected invalid request", error=exc.message)
        details = {"allowed": exc.allowed} if exc.allowed else {}
        return _error(422, "validation_error", exc.message, **details)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "not_found", str(exc))

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("Repository misconfigured", error=str(exc))
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "configuration_error", "Internal server error")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="repokit API",
        description="Users and permissions served through the repokit repository facade",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.get("/health", tags=["health"], status_code=200)
    async def health_check() -> JSONResponse:
        """Health check with per-dependency status and response times.

        Returns 200 if all services are healthy, 503 if any service is degraded.
        """
        start_time = time.time()

        db_start = time.time()
        db_healthy = await check_database_connection()
        db_response_time = round((time.time() - db_start) * 1000, 2)

        cache_start = time.time()
        cache_healthy = await check_cache_connection()
        cache_response_time = round((time.time() - cache_start) * 1000, 2)

        overall_healthy = db_healthy and cache_healthy
        overall_status = "healthy" if overall_healthy else "degraded"

        logger.info(
            "Health check completed",
            status=overall_status,
            database="healthy" if db_healthy else "unhealthy",
            cache="healthy" if cache_healthy else "unhealthy",
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )

        timestamp = datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        response = {
            "status": overall_status,
            "service": "repokit-api",
            "version": __version__,
            "timestamp": timestamp,
            "checks": {
                "database": {
                    "status": "healthy" if db_healthy else "unhealthy",
                    "response_time_ms": db_response_time,
                },
                "cache": {
                    "status": "healthy" if cache_healthy else "unhealthy",
                    "backend": settings.cache_backend,
                    "response_time_ms": cache_response_time,
                },
            },
        }
        status_code = status.HTTP_200_OK if overall_healthy else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=status_code, content=response)

    @app.get("/users", tags=["users"], response_model=UserPage)
    async def list_users(
        users: Annotated[UserRepository, Depends(get_user_repository)],
        page: int | None = None,
        per_page: Annotated[int | None, Query(le=100)] = None,
        search: str | None = None,
        sort_by: str | None = None,
        direction: str | None = None,
    ) -> dict[str, Any]:
        result = await PaginateUserService(users).run(
            PaginateOptions(page=page, per_page=per_page, sort_by=sort_by, direction=direction),
            search_term=search,
        )
        return result.to_dict(UserRead.model_validate)

    @app.get("/users/{user_id}", tags=["users"], response_model=UserRead)
    async def get_user(
        user_id: uuid.UUID,
        users: Annotated[UserRepository, Depends(get_user_repository)],
    ) -> UserRead:
        user = await users.find_by_or_fail("id", user_id, RepositoryOptions(preload=["roles"]))
        return UserRead.model_validate(user)

    @app.post(
        "/permissions",
        tags=["permissions"],
        response_model=PermissionRead,
        status_code=status.HTTP_201_CREATED,
    )
    async def create_permission(
        body: PermissionCreate,
        permissions: Annotated[PermissionRepository, Depends(get_permission_repository)],
    ) -> PermissionRead:
        permission = await CreatePermissionService(permissions).handle(
            PermissionData(
                resource=body.resource,
                action=body.action,
                name=body.name,
                description=body.description,
            )
        )
        return PermissionRead.model_validate(permission)

    instrument_fastapi_app(app)

    logger.info("FastAPI application created", cors_origins=settings.cors_origins_list)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "repokit.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=not settings.is_production,
        log_config=None,  # Use our structlog config
    )
