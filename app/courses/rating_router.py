"""
COURSE RATINGS ROUTER
File: app/courses/rating_router.py

Rating submission, rating listings, summary panel data and the
"rate this course" prompt check.
"""

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.courses.config import RECENT_RATINGS_LIMIT, TOP_RATED_LIMIT
from app.courses.dependencies import get_db, get_current_user_id
from app.courses.models import RatingSubmit, RatingPromptResponse
from app.courses.rating_service import RatingService

router = APIRouter(tags=["Ratings"])


@router.get("/top-rated")
async def top_rated_courses(
    limit: int = Query(TOP_RATED_LIMIT, ge=1, le=50),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    courses = await RatingService.get_top_rated_courses(db, limit=limit)
    return {"courses": courses, "count": len(courses)}


@router.post("/{course_id}/ratings")
async def submit_rating_endpoint(
    course_id: str,
    payload: RatingSubmit,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """
    Submit or update the caller's rating.
    Requires an enrollment; errors are mapped by the course error handlers.
    """
    result = await RatingService.submit_course_rating(
        db, user_id, course_id, payload.rating, payload.review
    )
    return {
        "success": True,
        "message": "Rating updated" if result.is_update else "Rating submitted",
        "result": result
    }


@router.get("/{course_id}/ratings")
async def list_ratings(course_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    ratings = await RatingService.get_course_ratings(db, course_id)
    return {"course_id": course_id, "ratings": ratings, "count": len(ratings)}


@router.get("/{course_id}/ratings/recent")
async def recent_ratings(
    course_id: str,
    limit: int = Query(RECENT_RATINGS_LIMIT, ge=1, le=50),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    ratings = await RatingService.get_recent_course_ratings(db, course_id, limit=limit)
    return {"course_id": course_id, "ratings": ratings, "count": len(ratings)}


@router.get("/{course_id}/ratings/summary")
async def rating_summary(course_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await RatingService.get_course_rating_summary(db, course_id)


@router.get("/{course_id}/ratings/me")
async def my_rating(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    rating = await RatingService.get_user_rating(db, user_id, course_id)
    return {"course_id": course_id, "has_rated": rating is not None, "rating": rating}


@router.get("/{course_id}/ratings/prompt", response_model=RatingPromptResponse)
async def rating_prompt(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    prompt = await RatingService.should_prompt_for_rating(db, user_id, course_id)
    return RatingPromptResponse(course_id=course_id, should_prompt=prompt)
