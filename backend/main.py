"""
ColdSend: FastAPI application entry point.

Starts the Transfer Manager (active adapter, send queue, broadcast hub)
on startup and serves the REST API and the live event stream.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from api.events import init_events, router as events_router
from api.routes import init_routes, router
from config import API_HOST, API_PORT
from transfer.manager import TransferManager

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
transfer_manager = TransferManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop background services."""
    logger.info("Starting ColdSend services...")
    try:
        await transfer_manager.start()
        logger.info(
            f"ColdSend ready. API: {API_HOST}:{API_PORT}, "
            f"adapter: {transfer_manager.adapter.id}"
        )
        yield
    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down ColdSend services...")
        await transfer_manager.stop()


# --- FastAPI app ---
app = FastAPI(
    title="ColdSend",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inject services into routes
init_routes(transfer_manager)
init_events(transfer_manager)
app.include_router(router)
app.include_router(events_router)


# --- Static Files (Frontend) ---
BASE_DIR = Path(__file__).parent.parent / "public"

if BASE_DIR.exists():
    app.mount("/static", StaticFiles(directory=BASE_DIR), name="static")

    @app.get("/")
    async def read_index():
        return FileResponse(BASE_DIR / "index.html")
else:
    logger.warning(f"Frontend not found at {BASE_DIR}. API only mode.")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
