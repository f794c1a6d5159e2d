import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.api.routes import audit, configurations, inventory, orders, payments, repairs
from storefront.core.config import Settings
from storefront.core.database import Database
from storefront.core.errors import InvalidPromoError, StorefrontError, ValidationError
from storefront.core.security import AuthorizationGuard
from storefront.services.container import ServiceContainer
from storefront.services.integrations import Notifier, PaymentGateway

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    guard: Optional[AuthorizationGuard] = None,
    notifier: Optional[Notifier] = None,
    payment_gateway: Optional[PaymentGateway] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = Database(settings.database_url, echo=settings.database_echo)
        database.create_all()
        container = ServiceContainer.build(
            settings, database, guard=guard, notifier=notifier, payment_gateway=payment_gateway
        )
        app.state.database = database
        app.state.container = container
        logger.info("Storefront API started")
        try:
            yield
        finally:
            await container.dispatcher.drain()
            database.close()
            logger.info("Storefront API stopped")

    app = FastAPI(
        title="Storefront Core",
        description="Order, repair and inventory backend for the PC storefront",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Include routers
    app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])
    app.include_router(repairs.router, prefix="/api/v1/repairs", tags=["repairs"])
    app.include_router(configurations.router, prefix="/api/v1/configurations", tags=["configurations"])
    app.include_router(inventory.router, prefix="/api/v1/inventory", tags=["inventory"])
    app.include_router(audit.router, prefix="/api/v1/audit", tags=["audit"])
    app.include_router(payments.router, prefix="/api/v1/payments", tags=["payments"])

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(request: Request, exc: StorefrontError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        body = {"detail": exc.message, "error_type": type(exc).__name__}
        if isinstance(exc, ValidationError) and exc.fields:
            body["fields"] = exc.fields
        if isinstance(exc, InvalidPromoError):
            body["reason"] = exc.reason
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "detail": "Invalid request",
                "error_type": "ValidationError",
                "errors": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "InternalError"},
        )

    @app.get("/")
    async def root():
        return {"message": "Storefront Core API"}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)
