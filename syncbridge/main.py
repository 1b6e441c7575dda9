# syncbridge/main.py

import logging
import os
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from syncbridge.core.config import get_settings
from syncbridge.core.logging_config import configure_logging
from syncbridge.database import async_session
from syncbridge.integrations.queue_consumer import SyncQueueConsumer
from syncbridge.integrations.setup import close_platforms, setup_platforms
from syncbridge.routes import health, scheduler as scheduler_routes, sync, webhooks
from syncbridge.scheduler import start_scheduler, stop_scheduler
from syncbridge.services.notification_service import EmailNotificationService

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    if os.getenv("RUN_MIGRATIONS", "false").lower() == "true":
        logger.info("Running database migrations...")
        result = subprocess.run(["alembic", "upgrade", "head"], capture_output=True, text=True)
        if result.returncode == 0:
            logger.info("Migrations completed successfully")
        else:
            logger.error(f"Migration failed: {result.stderr}")

    app.state.platforms = setup_platforms(settings)
    app.state.queue_consumer = None

    if settings.WEBHOOK_PROCESSING_MODE == "queue":
        consumer = SyncQueueConsumer(
            async_session,
            app.state.platforms,
            settings,
            notifier=EmailNotificationService(settings),
        )
        consumer.start()
        app.state.queue_consumer = consumer

    await start_scheduler(app.state.platforms, settings)
    try:
        yield  # This is where the app runs
    finally:
        await stop_scheduler()
        if app.state.queue_consumer is not None:
            await app.state.queue_consumer.stop()
        await close_platforms(app.state.platforms)


app = FastAPI(
    title="SyncBridge",
    lifespan=lifespan
)


# Add middleware to handle HTTPS behind proxy
@app.middleware("http")
async def proxy_headers_middleware(request: Request, call_next):
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto == "https":
        request.scope["scheme"] = "https"
    response = await call_next(request)
    return response


app.include_router(webhooks.router)
app.include_router(sync.router)
app.include_router(scheduler_routes.router)
app.include_router(health.router)
