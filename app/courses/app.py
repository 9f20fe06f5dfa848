"""
Course Ratings - Route and startup wiring
Registers enrollment and rating routers and maps rating errors to HTTP
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.courses.database import create_rating_indexes
from app.courses.enrollment_router import router as enrollment_router
from app.courses.errors import (
    RatingError, InvalidRating, EnrollmentNotFound, CourseNotFound,
    CorruptAggregate, TransactionConflict, StoreUnavailable
)
from app.courses.rating_router import router as rating_router

logger = logging.getLogger(__name__)

# ==================== ERROR MAPPING ====================

ERROR_STATUS = {
    InvalidRating: 422,
    EnrollmentNotFound: 403,
    CourseNotFound: 404,
    TransactionConflict: 409,
    StoreUnavailable: 503,
    CorruptAggregate: 500,
}


def status_for(error: RatingError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


async def rating_error_handler(request: Request, exc: RatingError):
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "error": type(exc).__name__}
    )


async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"{request.method} {request.url.path} database error: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Database unavailable", "error": StoreUnavailable.__name__}
    )

# ==================== ROUTER SETUP ====================

def setup_course_routes(app: FastAPI):
    """Register all course-related routers"""
    app.include_router(enrollment_router, prefix="/courses")
    app.include_router(rating_router, prefix="/courses")

    app.add_exception_handler(RatingError, rating_error_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)

    logger.info("Course routes registered")

# ==================== STARTUP ====================

async def startup_course_system(db: AsyncIOMotorDatabase):
    """Initialize course system on app startup"""
    await create_rating_indexes(db)
    logger.info("Course rating system initialized")
