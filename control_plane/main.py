import asyncio
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from control_plane.config import settings
from control_plane.core.errors import ControlPlaneError
from control_plane.core.middleware import SecurityHeadersMiddleware
from control_plane.modules.permissions import routes as permissions_routes
from control_plane.modules.permissions.role_cache import role_cache_refresh_loop
from control_plane.modules.permissions.service import build_permission_service

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    redirect_slashes=False,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ControlPlaneError)
async def control_plane_exception_handler(request: Request, exc: ControlPlaneError):
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.url.path}: {exc.message}")
        detail = "Internal server error" if settings.is_production else exc.message
    else:
        detail = exc.message
    return JSONResponse(status_code=exc.status_code, content={"detail": detail, "error": exc.kind})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.is_production:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include module routes
app.include_router(permissions_routes.router, prefix="/api/v1")


@app.on_event("startup")
async def startup_event():
    logger.info("Application startup")

    if getattr(app.state, "permission_service", None) is None:
        service = build_permission_service()
        await asyncio.to_thread(service.initialize, settings.seed_on_startup)
        app.state.permission_service = service

    # Periodic role cache reload
    app.state.role_cache_task = asyncio.create_task(
        role_cache_refresh_loop(app.state.permission_service.cache, settings.role_cache_refresh_seconds)
    )
    logger.info(f"Role cache refresh scheduled every {settings.role_cache_refresh_seconds} seconds")


@app.on_event("shutdown")
async def shutdown_event():
    task = getattr(app.state, "role_cache_task", None)
    if task is not None:
        task.cancel()
    logger.info("Application shutdown")


@app.get("/")
async def root():
    return {"message": "Welcome to appruntime-control-plane", "status": "healthy"}


@app.get("/health")
@limiter.exempt
async def health():
    return {"status": "healthy"}


@app.get("/ready")
@limiter.exempt
async def ready():
    """Readiness probe: ready once the role cache holds a snapshot."""
    service = getattr(app.state, "permission_service", None)
    if service is None or not service.cache.is_loaded:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return {"status": "ready"}
