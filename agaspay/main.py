"""FastAPI Application Entry Point"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from agaspay.api.deps import close_billing_api
from agaspay.api.v1.router import api_router
from agaspay.config import settings
from agaspay.core.exceptions import BillingEngineError
from agaspay.core.logging import get_logger, setup_logging
from agaspay.core.middleware import RequestIDMiddleware, RequestTimingMiddleware
from agaspay.core.rate_limit import limiter
from agaspay.database import AsyncSessionLocal, close_db, init_db
from agaspay.schemas.responses import ErrorDetail, ErrorResponse

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s", settings.APP_NAME, extra={"environment": settings.ENVIRONMENT})
    if settings.is_development:
        await init_db()
        logger.info("Database tables created")

    yield

    logger.info("Shutting down")
    await close_billing_api()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Bills, balances, status badges and e-wallet payments for the AGASPAY consumer portal",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=settings.ALLOWED_METHODS,
    allow_headers=[settings.ALLOWED_HEADERS],
    expose_headers=["X-Request-ID", "X-Process-Time"],
)
# Added last so it runs first and the timing log carries the request id
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(RequestIDMiddleware)

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus a database round trip; markers cannot be read without it."""
    database = "ok"
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.error("Health check could not reach the database", exc_info=True)
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "app_name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "database": database,
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "billing": f"{settings.API_V1_PREFIX}/billing/connections/{{connection_id}}",
        "docs": "/docs",
        "health": "/health",
    }


@app.exception_handler(BillingEngineError)
async def billing_exception_handler(request: Request, exc: BillingEngineError):
    """Billing and payment errors become the error envelope with the error's own status"""
    level = "error" if exc.status_code >= 500 else "info"
    getattr(logger, level)("%s: %s", exc.code, exc.message, extra={"path": request.url.path})
    body = ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message, details=exc.details()))
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # ctx may hold exception instances, which are not JSON serializable
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    logger.warning("Validation error", extra={"path": request.url.path, "errors": errors})
    body = ErrorResponse(error=ErrorDetail(
        code="REQUEST_VALIDATION_ERROR",
        message="Request body or parameters are invalid",
        details={"errors": errors},
    ))
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body.model_dump())


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, extra={"path": request.url.path}, exc_info=True)
    body = ErrorResponse(error=ErrorDetail(code="INTERNAL_ERROR", message="Internal server error"))
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "agaspay.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
