"""
QR Signal - Offline WebRTC Signaling Host
FastAPI Backend Entry Point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import qrsignal

from backend import config
from backend.registry import registry
from backend.routes import signaling

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(
        "Starting QR Signal host (max %d sessions, %d chars per code, ECC %s)",
        config.MAX_SESSIONS, config.MAX_FRAGMENT_LEN, config.QR_ERROR_CORRECTION,
    )
    yield
    logger.info("Shutting down QR Signal host, closing %d session(s)", len(registry))
    registry.clear()


# Create FastAPI app
app = FastAPI(
    title="QR Signal API",
    description="Offline WebRTC signaling over scanned QR codes",
    version=qrsignal.__version__,
    lifespan=lifespan
)

# CORS middleware (browser engines poll from other origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(signaling.router, prefix="/api/sessions", tags=["Sessions"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": qrsignal.__version__,
        "sessions": len(registry),
    }


def run():
    """Console entry point: serve the app with uvicorn"""
    import uvicorn
    uvicorn.run("backend.main:app", host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
