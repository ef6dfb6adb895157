"""
Health and basic status endpoints.
"""
from fastapi import APIRouter

from trialchat import __version__
from trialchat.config import get_feature_flags, get_streaming_config

router = APIRouter(prefix="", tags=["health"])


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Trial Matching Chat Backend - Live!",
        "status": "operational",
        "version": __version__,
    }


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "streaming": get_streaming_config(),
        "features": get_feature_flags(),
    }
