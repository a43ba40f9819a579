"""
Main FastAPI application for the terrain facet planner.
"""
import logging
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api.routes import router as api_router
from .core.errors import (
    DegenerateGeometryError,
    InvalidTileSetError,
    SegmentationFailureError,
    SegmentationTimeoutError,
    TerrainAnalysisError,
)
from .version import VERSION, BUILD_DATE, get_version_info

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    InvalidTileSetError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DegenerateGeometryError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    SegmentationTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    SegmentationFailureError: status.HTTP_502_BAD_GATEWAY,
}

# Create FastAPI app
app = FastAPI(
    title="Terrain Facet Planner",
    description="Contour directions and planar terrain facets for drone flight planning",
    version=VERSION
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Validation error handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors with details."""
    errors = exc.errors()
    logger.error(f"Validation error on {request.method} {request.url}")
    logger.error(f"Validation errors: {errors}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": jsonable_errors(errors)},
    )

# Analysis error handler
@app.exception_handler(TerrainAnalysisError)
async def analysis_exception_handler(request: Request, exc: TerrainAnalysisError):
    """Report one tagged error kind per failed request."""
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.error(f"{exc.kind} on {request.method} {request.url}: {exc.message}")

    return JSONResponse(status_code=status_code, content=exc.to_dict())


def jsonable_errors(errors):
    """Drop non-serializable context (e.g. exception objects) from pydantic errors."""
    return [
        {key: value for key, value in error.items() if key in ("type", "loc", "msg")}
        for error in errors
    ]

# Include API routes
app.include_router(api_router, prefix="/api/v1")

# Version endpoint
@app.get("/api/v1/version")
async def get_version():
    """Get API version information."""
    return get_version_info()

# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "Terrain Facet Planner",
        "version": VERSION,
        "build_date": BUILD_DATE
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "facet_planner.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
