"""Exception handlers mapping booking errors to JSON responses."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hostly.domain.errors import BookingError
from hostly.observability.logging import get_logger, log_fields
from hostly.services.property_catalog import PropertyCatalogError

logger = get_logger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Install handlers so every failure has a machine-readable ``error``."""

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        if exc.http_status >= 500 or exc.retryable:
            logger.warning(
                "request failed",
                extra=log_fields(path=request.url.path, error=exc.code),
            )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        return JSONResponse(
            status_code=422,
            content={
                "error": "VALIDATION_ERROR",
                "detail": f"invalid fields: {', '.join(fields)}",
                "retryable": False,
            },
        )

    @app.exception_handler(PropertyCatalogError)
    async def catalog_error_handler(
        request: Request, exc: PropertyCatalogError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=503,
            content={
                "error": "CATALOG_UNAVAILABLE",
                "detail": "property catalog unavailable",
                "retryable": True,
            },
        )
