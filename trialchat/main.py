"""
FastAPI application for the trial matching chat backend
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import ALLOWED_ORIGINS, ENVIRONMENT
from .routers import health, chat
from .services.session import get_coordinator
from .utils.logging import setup_structured_logging

setup_structured_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Trial Matching Chat API",
    description="Streaming chat backend for clinical trial matching",
    version=__version__,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router)
app.include_router(chat.router)


@app.on_event("startup")
async def startup_event():
    coordinator = get_coordinator()
    logger.info(
        f"🚀 Trial matching chat backend started (env={ENVIRONMENT}, "
        f"default_mode={coordinator.default_mode.value})"
    )


@app.on_event("shutdown")
async def shutdown_event():
    coordinator = get_coordinator()
    for backend in coordinator.backends.values():
        await backend.aclose()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
