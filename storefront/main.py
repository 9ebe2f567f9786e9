import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import models  # noqa: F401  registers the tables on Base.metadata
from .catalog import seed_sample_products
from .config import Settings, get_settings
from .db import Database
from .errors import register_error_handlers
from .events import EventPublisher
from .mpesa import MpesaClient
from .routers import orders, payments, products

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    *,
    mpesa: MpesaClient | None = None,
    events: EventPublisher | None = None,
) -> FastAPI:
    """
    Build the storefront API. Run with:

        uvicorn storefront.main:create_app --factory
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db: Database = app.state.db
        if settings.db_init_on_startup:
            db.init_schema()
            if settings.seed_sample_products:
                with db.session() as s:
                    seed_sample_products(s)
        yield
        try:
            await app.state.mpesa.aclose()
        finally:
            db.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.state.settings = settings
    app.state.db = Database(settings)
    app.state.events = events or EventPublisher(settings)
    app.state.mpesa = mpesa or MpesaClient(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(products.router)
    app.include_router(orders.router)
    app.include_router(payments.router)

    @app.get("/health")
    def health():
        if not app.state.db.ping():
            return JSONResponse(status_code=503, content={"ok": False, "database": "disconnected"})
        return {"ok": True, "database": "connected"}

    logger.info("%s configured (events=%s)", settings.app_name, app.state.events.backend)
    return app
