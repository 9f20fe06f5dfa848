"""
ENROLLMENT ROUTER
File: app/courses/enrollment_router.py

Enrollment and lesson-view tracking. Lesson views feed the rating prompt.
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.courses.models import EnrollmentCreate, LessonViewUpdate
from app.courses.enrollment_service import EnrollmentService
from app.courses.dependencies import get_db, get_current_user_id

router = APIRouter(tags=["Enrollments"])


@router.post("/enroll")
async def enroll_endpoint(
    enrollment: EnrollmentCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Enroll in course (idempotent)"""
    result = await EnrollmentService.enroll_in_course(db, user_id, enrollment.course_id)
    enr = result["enrollment"]

    return {
        "success": True,
        "enrollment_id": enr["enrollment_id"],
        "message": "Already enrolled in this course" if result["already_enrolled"] else "Enrolled successfully",
        "already_enrolled": result["already_enrolled"]
    }


@router.get("/course/{course_id}/progress")
async def get_course_progress(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get progress in specific course"""
    progress = await EnrollmentService.get_user_course_progress(db, user_id, course_id)
    if not progress:
        raise HTTPException(status_code=404, detail="Not enrolled in this course")
    return progress


@router.post("/course/{course_id}/lessons/{lesson_id}/view")
async def update_lesson_view(
    course_id: str,
    lesson_id: str,
    update: Optional[LessonViewUpdate] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Mark a lesson viewed (or un-viewed) for the caller"""
    return await EnrollmentService.update_lesson_view_status(
        db, user_id, course_id, lesson_id, update.viewed if update else True
    )
