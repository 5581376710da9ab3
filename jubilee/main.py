import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from jubilee.api.admin import router as admin_router
from jubilee.api.avatar import router as avatar_router
from jubilee.api.routes import router
from jubilee.core.config import settings
from jubilee.core.database import engine
from jubilee.core.rate_limit import RateLimiter
from jubilee.models.registrant import create_tables
from jubilee.services.badge_compositor import build_compositor
from jubilee.services.card_generator import CardGeneratorService
from jubilee.services.pdf_export import CardPackager
from jubilee.services.scanner import CheckInScanner, HttpCheckInClient

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def init_state(app: FastAPI) -> HttpCheckInClient:
    """Wire the long-lived services onto ``app.state``."""
    generator = CardGeneratorService(build_compositor(settings), delay=settings.generation_delay)
    client = HttpCheckInClient(
        settings.CHECK_IN_API_URL,
        auth=(settings.SCANNER_USERNAME, settings.SCANNER_PASSWORD),
        timeout=settings.CHECK_IN_TIMEOUT,
    )

    app.state.rate_limiter = RateLimiter()
    app.state.card_generator = generator
    app.state.packager = CardPackager(generator, batch_size=settings.CARD_BATCH_SIZE)
    app.state.scanner = CheckInScanner(
        client,
        dedupe_window=settings.scan_dedupe_window,
        callback_throttle=settings.scan_callback_throttle,
    )
    app.state.event_name = settings.EVENT_NAME
    app.state.static_dir = settings.STATIC_DIR
    app.state.avatar_dir = settings.AVATAR_DIR
    return client


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables(engine)
    logger.info(f"Database tables ready at {settings.DATABASE_URL}")
    client = init_state(app)
    yield
    app.state.scanner.close_dialog()
    await client.aclose()
    from jubilee.services.video import release_camera
    release_camera()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
if os.path.isdir(settings.STATIC_DIR):
    app.mount("/static", StaticFiles(directory=settings.STATIC_DIR), name="static")
app.include_router(router)
app.include_router(admin_router)
app.include_router(avatar_router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("jubilee.main:app", host="0.0.0.0", port=8000, reload=True)
