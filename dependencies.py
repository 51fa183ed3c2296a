# dependencies.py
from typing import Optional
from fastapi import HTTPException, Request, status
from config import Settings, settings
from engine.pipeline import MetricsEngine
from feed_manager import ConnectionManager

def get_settings(request: Request) -> Settings:
    """Settings the application was created with"""
    return getattr(request.app.state, "settings", settings)

def get_engine(request: Request) -> MetricsEngine:
    """
    Returns the metrics engine created in the application lifespan.
    Raises HTTPException 503 while the application is not started.
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Metrics engine is not running",
        )
    return engine

def get_feed(request: Request) -> Optional[ConnectionManager]:
    """The live feed subscription, or None when the feed is disabled"""
    return getattr(request.app.state, "feed", None)
