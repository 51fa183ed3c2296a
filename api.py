# api.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import uvicorn
from typing import Dict, Any
import psutil
import time

from routes import general
from routes.metrics.routes import router as metrics_router
from middleware import setup_middleware
from engine.models import FeedStatus
from engine.pipeline import MetricsEngine
from feed_manager import ConnectionManager
from utils.logging import logger, start_telegram_handler, stop_telegram_handler
from utils.monitoring import FeedHealthMonitor
from config import Settings, settings

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for the FastAPI application"""
    config: Settings = app.state.settings

    # Start Telegram handler if configured
    start_telegram_handler()

    engine = MetricsEngine.from_settings(config)
    app.state.engine = engine
    app.state.feed = None
    app.state.monitor_tasks = []
    app.state.started_at = time.time()

    if config.FEED_ENABLED:
        feed = ConnectionManager(engine, config)
        app.state.feed = feed
        await feed.start()

        monitor = FeedHealthMonitor(
            engine,
            feed,
            stale_after=config.STALE_FEED_SECONDS,
            interval=config.HEALTH_CHECK_INTERVAL,
        )
        app.state.monitor = monitor
        app.state.monitor_tasks.append(asyncio.create_task(monitor.monitor_task()))
    else:
        engine.set_connection_status(FeedStatus.DISCONNECTED)
        logger.warning("Block feed disabled, metrics will stay empty until blocks are applied")

    logger.info("Application startup completed successfully")

    try:
        yield
    finally:
        # Cleanup
        logger.info("Starting application shutdown")
        for task in app.state.monitor_tasks:
            task.cancel()
        if app.state.monitor_tasks:
            await asyncio.gather(*app.state.monitor_tasks, return_exceptions=True)
        if app.state.feed is not None:
            await app.state.feed.stop()
        else:
            engine.close()

        # Stop Telegram handler
        await stop_telegram_handler()

        logger.info("Application shutdown completed")

def create_application(config: Settings = settings) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="BlockWave API",
        description="Live per-algorithm hashrate and block distribution metrics for multi-algorithm chains",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = config

    # Setup CORS
    origins = [
        "http://localhost:5173",    # Vite development server
        "http://localhost:3000",    # Alternative development port
        "http://127.0.0.1:5173",    # Alternative localhost
        "http://127.0.0.1:3000",    # Alternative localhost
    ]

    if not config.DEBUG:
        origins.extend(config.get_allowed_origins())
    else:
        # In development, can allow all origins
        origins.append("*")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        max_age=86400,  # Cache preflight requests for 24 hours
    )

    # Include routers
    app.include_router(general.router)
    app.include_router(metrics_router, prefix="/metrics")

    @app.get("/health")
    async def health_check(request: Request) -> Dict[str, Any]:
        """Health check endpoint for the API"""
        state = request.app.state
        engine = getattr(state, "engine", None)
        feed = getattr(state, "feed", None)
        monitor = getattr(state, "monitor", None)

        process = psutil.Process()
        with process.oneshot():
            memory_mb = round(process.memory_info().rss / (1024 * 1024), 1)
            threads = process.num_threads()

        reasons = monitor.check() if monitor else []
        snapshot = engine.state() if engine else None
        return {
            "status": "healthy" if engine is not None and not reasons else "degraded",
            "reasons": reasons,
            "feed": {
                "enabled": feed is not None,
                "connectionState": feed.state.value if feed else None,
                "status": snapshot.status.value if snapshot else None,
                "freshness": snapshot.freshness.value if snapshot else None,
                "lastMessageTime": feed.last_message_time if feed else None,
                "connectionsOpened": feed.connections_opened if feed else 0,
            },
            "process": {
                "memory_rss_mb": memory_mb,
                "threads": threads,
                "uptime_seconds": round(time.time() - getattr(state, "started_at", time.time()), 1),
            },
            "version": "1.0.0"
        }

    # Additional middleware
    setup_middleware(app)

    return app

# Create the application instance
app = create_application()

if __name__ == "__main__":
    # A single worker: every worker process would open its own feed subscription
    uvicorn.run(
        "api:app",
        host="0.0.0.0",
        port=8000,
        workers=1,
        timeout_keep_alive=30,
        access_log=True
    )
