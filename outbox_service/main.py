import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status

from outbox_service.api.v1.conversations import router as conversations_router
from outbox_service.api.v1.outbox import router as outbox_router
from outbox_service.consumers.outbox_poller import build_outbox_components
from outbox_service.core.config import LOG_LEVEL, PROJECT_NAME, RUN_DISPATCHER_IN_API, VERSION
from outbox_service.core.db import close_db, init_db
from outbox_service.core.exception_handlers import setup_exception_handlers

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Connects the database and wires the outbox dispatcher.

    With OUTBOX_RUN_IN_API disabled the scheduler is left to the standalone
    poller process; the processor is still exposed for manual dispatch.
    """
    log.info(f"Starting {PROJECT_NAME} v{VERSION}...")
    await init_db()

    components = build_outbox_components()
    app.state.outbox_processor = components.processor
    if RUN_DISPATCHER_IN_API:
        app.state.outbox_scheduler = components.scheduler
        await components.start()
    else:
        await components.publisher.start()
    try:
        yield
    finally:
        # Scheduler first so the last tick can still reach the broker and the DB
        await components.stop()
        await close_db()
        log.info(f"{PROJECT_NAME} stopped.")


app = FastAPI(
    title=PROJECT_NAME,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(conversations_router, prefix="/api/v1/conversations", tags=["Conversations"])
app.include_router(outbox_router, prefix="/api/v1/outbox", tags=["Outbox Administration"])

setup_exception_handlers(app)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    return {"status": "ok", "app_name": PROJECT_NAME}
