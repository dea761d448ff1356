import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .db import get_engine, get_session, init_models
from .middleware import RequestLoggingMiddleware, RateLimitMiddleware
from .publisher import RabbitPublisher
from .redis_client import get_redis_client
from .routes import router
from .seed import seed_vendors

logger = logging.getLogger(__name__)


def create_app(
    database_url: str | None = None,
    publisher: RabbitPublisher | None = None,
    redis_client=None,
) -> FastAPI:
    app = FastAPI(title="SwiftSlot Booking Service")

    engine = get_engine(database_url or config.DATABASE_URL, echo=config.DB_ECHO)
    app.state.engine = engine
    app.state.session_factory = get_session(engine)
    app.state.publisher = publisher or RabbitPublisher()

    if redis_client is None:
        redis_client = get_redis_client()
    if redis_client is not None:
        app.add_middleware(RateLimitMiddleware, redis_client=redis_client, max_per_minute=config.RATE_LIMIT_PER_MINUTE)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Idempotency-Key"],
    )
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "service": "swiftslot",
            "events_enabled": app.state.publisher.enabled,
        }

    @app.on_event("startup")
    async def startup():
        if config.AUTO_CREATE_TABLES:
            await init_models(engine)
        if config.SEED_VENDORS:
            await seed_vendors(app.state.session_factory)
        try:
            await app.state.publisher.connect()
        except Exception as e:
            logger.warning("[swiftslot] RabbitMQ connect failed at startup; continuing without events: %s", e)

    @app.on_event("shutdown")
    async def shutdown():
        try:
            await app.state.publisher.close()
        finally:
            await engine.dispose()

    return app


logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = create_app()
