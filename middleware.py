# middleware.py
from fastapi import FastAPI, Request
from utils.logging import logger
import time

async def add_process_time_header(request: Request, call_next):
    """Middleware to track request processing time"""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response

async def add_feed_status_headers(request: Request, call_next):
    """Tell clients whether the numbers they get are live, stale or synthetic"""
    response = await call_next(request)
    engine = getattr(request.app.state, "engine", None)
    if engine is not None:
        state = engine.state()
        response.headers["X-Feed-Status"] = state.status.value
        response.headers["X-Data-Freshness"] = state.freshness.value
    return response

class LoggingMiddleware:
    """Middleware for request logging"""
    def __init__(self, app: FastAPI):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            start_time = time.time()

            # Create a modified send function to capture the response
            async def wrapped_send(message):
                if message["type"] == "http.response.start":
                    process_time = time.time() - start_time
                    status_code = message["status"]
                    logger.info(
                        f"Request: {scope['method']} {scope['path']} "
                        f"Status: {status_code} "
                        f"Duration: {process_time:.3f}s"
                    )
                await send(message)

            return await self.app(scope, receive, wrapped_send)
        return await self.app(scope, receive, send)

def setup_middleware(app: FastAPI):
    """Setup all middleware for the application"""
    # CORS middleware is already added in create_application()
    app.middleware("http")(add_process_time_header)
    app.middleware("http")(add_feed_status_headers)
    app.add_middleware(LoggingMiddleware)

    logger.info("Middleware setup completed")
