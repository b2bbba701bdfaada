"""Main FastAPI application"""
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from proxystats.core.config import settings
from proxystats.core.exceptions import StatsError
from proxystats.core.redis import redis_client
from proxystats.core.init import init_system
from proxystats.services.geoip_service import GeoIPReadinessCache
from proxystats.services.traffic_writer import TrafficWriter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    await redis_client.connect()
    await init_system()
    app.state.traffic_writer = TrafficWriter()
    app.state.geoip_readiness = GeoIPReadinessCache(ttl=settings.GEOIP_READINESS_TTL)
    yield
    # Shutdown
    await redis_client.disconnect()


app = FastAPI(
    title=settings.APP_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StatsError)
async def stats_error_handler(request: Request, exc: StatsError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Import and include routers
from proxystats.api.v1 import stats, admin
from proxystats.api import internal

# API routes
app.include_router(stats.router, prefix="/api/v1/backends", tags=["stats"])
app.include_router(admin.router, prefix="/api/v1/db", tags=["db"])

# Internal API for collectors
app.include_router(internal.router, prefix="/internal", tags=["internal"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "ProxyStats API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok"}


def run():
    """Serve the API with uvicorn"""
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
