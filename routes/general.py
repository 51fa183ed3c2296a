# routes/general.py
from fastapi import APIRouter, Request

router = APIRouter()

@router.get("/")
async def root():
    """Root endpoint returning API information"""
    return {
        "app": "BlockWave API",
        "version": "1.0.0",
        "status": "operational"
    }

@router.get("/routes")
async def list_routes(request: Request):
    """List all available routes in the API"""
    routes = []
    for route in request.app.routes:
        if hasattr(route, "methods") and hasattr(route, "path"):
            for method in route.methods:
                routes.append({
                    "path": route.path,
                    "method": method,
                    "name": route.name if hasattr(route, "name") else None
                })
    return sorted(routes, key=lambda x: (x["path"], x["method"]))
