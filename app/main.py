import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.cache import cache_manager
from app.core.config import get_settings
from app.core.database_init import init_database_schema
from app.core.logging import configure_logging
from app.core.middleware import RequestContextMiddleware
from app.routers import get_api_router, get_files_router
from app.services.bootstrap import ensure_default_categories
from app.services.exceptions import ErrorKind, ServiceError, ValidationError

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UPLOAD: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()

    logger = logging.getLogger("app.errors")

    app = FastAPI(title=settings.PROJECT_NAME)

    origins = settings.cors_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
        log = logger.warning if status_code < 500 else logger.error
        log(
            "%s %s failed kind=%s message=%s detail=%s",
            request.method,
            request.url.path,
            exc.kind.value,
            exc.message,
            exc.detail,
        )
        content = {"message": exc.message, "error": exc.detail}
        if isinstance(exc, ValidationError):
            content["errors"] = exc.errors
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors: dict[str, list[str]] = {}
        for error in exc.errors():
            location = error.get("loc") or ("payload",)
            errors.setdefault(str(location[-1]), []).append(error.get("msg", "Invalid value"))
        logger.warning("Validation error on %s %s detail=%s", request.method, request.url.path, errors)
        first = next(iter(errors.values()), ["Invalid request"])
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"message": "The given data was invalid.", "error": first[0], "errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": detail, "error": detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Internal server error", "error": str(exc)},
        )

    app.include_router(get_api_router(), prefix=settings.API_V1_PREFIX)
    app.include_router(get_files_router(settings.STORAGE_URL_PREFIX))

    @app.on_event("startup")
    def startup_event():
        init_database_schema()
        cache_manager.init_backend()
        ensure_default_categories()

    return app


app = create_app()
