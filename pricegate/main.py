from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pricegate.api.routes import router
from pricegate.config.settings import get_settings
from pricegate.db.database import init_db, make_engine, make_session_factory
from pricegate.services.factory import build_price_gateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # tests inject their own service before startup
    if getattr(app.state, "price_gateway_service", None) is None:
        settings = app.state.get_settings()
        logging.basicConfig(
            level=settings.LOG_LEVEL,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        engine = make_engine(settings.DATABASE_URL)
        init_db(engine)
        app.state.engine = engine
        app.state.price_gateway_service = build_price_gateway(settings, make_session_factory(engine))
        logger.info(
            "[APP][startup] quote_provider=%s rate_provider=%s reporting_currency=%s",
            settings.QUOTE_PROVIDER,
            settings.RATE_PROVIDER,
            settings.REPORTING_CURRENCY,
        )

    try:
        yield
    finally:
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            engine.dispose()


app = FastAPI(title="Price Gateway", version="0.1.0", lifespan=lifespan)

# browser clients call the price endpoints cross-origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/v1")

app.state.get_settings = get_settings
app.state.price_gateway_service = None


@app.get("/health")
def health_check():
    return {"status": "healthy"}
