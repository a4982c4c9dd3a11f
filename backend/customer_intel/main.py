# backend/customer_intel/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import HTMLResponse

from .config import get_settings
from .routers import intelligence, scores, usage_events
from .seed import seed_if_needed
from .service import get_intel

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting customer intelligence service (storage=%s)", settings.storage_backend)
    # Optional seeding
    if settings.seed_on_start:
        seed_if_needed(app.dependency_overrides.get(get_intel, get_intel)())
    yield
    logger.info("Shutting down customer intelligence service")


app = FastAPI(title="Customer Intelligence", lifespan=lifespan)


@app.get("/", response_class=HTMLResponse)
def index():
    return """
    <html><body>
      <h1>Customer Intelligence</h1>
      <ul>
        <li><a href="/docs">API docs</a></li>
        <li><a href="/health">Health check</a></li>
      </ul>
    </body></html>
    """


@app.get("/health")
def health():
    return {"status": "ok"}


# API routers
app.include_router(usage_events.router)
app.include_router(scores.router)
app.include_router(intelligence.router)
