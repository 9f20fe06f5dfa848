"""
Enrollment and lesson progress
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.courses.database import CourseStore, EnrollmentStore, CompletionStore, UserStore, serialize_mongo
from app.courses.errors import CourseNotFound, EnrollmentNotFound
from app.courses.models import CourseProgress
from app.courses.rating_logic import completion_progress

logger = logging.getLogger(__name__)


class EnrollmentService:

    @staticmethod
    async def is_user_enrolled(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> bool:
        return await EnrollmentStore.get_enrollment(db, user_id, course_id) is not None

    @staticmethod
    async def enroll_in_course(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> dict:
        """
        Enroll a user in a course.
        Enrolling twice returns the existing enrollment unchanged, including
        when two enroll requests race past the existence check: the unique
        (user_id, course_id) index rejects the second insert.
        """
        course = await CourseStore.get_course(db, course_id)
        if not course:
            raise CourseNotFound(course_id)

        existing = await EnrollmentStore.get_enrollment(db, user_id, course_id)
        if existing:
            logger.info(f"User {user_id} already enrolled in course {course_id}")
            return {"enrollment": serialize_mongo(existing), "already_enrolled": True}

        profile = await UserStore.get_profile(db, user_id) or {}
        try:
            enrollment = await EnrollmentStore.create_enrollment(
                db, user_id, course_id,
                user_name=profile.get("full_name") or "Anonymous",
                user_email=profile.get("email") or ""
            )
        except DuplicateKeyError:
            existing = await EnrollmentStore.get_enrollment(db, user_id, course_id)
            if not existing:
                raise
            logger.info(f"User {user_id} enrolled in course {course_id} by a concurrent request")
            return {"enrollment": serialize_mongo(existing), "already_enrolled": True}

        await CourseStore.increment_enrollments(db, course_id)

        logger.info(f"User {user_id} enrolled in course {course_id} ({enrollment['enrollment_id']})")
        return {"enrollment": serialize_mongo(enrollment), "already_enrolled": False}

    @staticmethod
    async def update_lesson_view_status(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str,
        lesson_id: str,
        viewed: bool = True
    ) -> CourseProgress:
        """Record whether a lesson has been viewed and refresh the all-viewed flag"""
        enrollment = await EnrollmentStore.set_lesson_viewed(db, user_id, course_id, lesson_id, viewed)
        if not enrollment:
            raise EnrollmentNotFound(user_id, course_id)
        logger.debug(f"User {user_id} lesson {lesson_id} in {course_id} viewed={viewed}")

        total_lessons = await CourseStore.get_lesson_count(db, course_id)
        viewed_count = CompletionStore.count_viewed(CompletionStore.parse_lessons_seen(enrollment))
        all_lessons_viewed = total_lessons > 0 and viewed_count >= total_lessons

        await EnrollmentStore.set_all_lessons_viewed(
            db, user_id, course_id, enrollment.get("lessons_seen") or [], all_lessons_viewed
        )
        enrollment["all_lessons_viewed"] = all_lessons_viewed
        return EnrollmentService._progress(enrollment, total_lessons)

    @staticmethod
    async def mark_lesson_completed(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str,
        lesson_id: str
    ) -> CourseProgress:
        return await EnrollmentService.update_lesson_view_status(db, user_id, course_id, lesson_id, True)

    @staticmethod
    async def get_user_course_progress(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str
    ) -> Optional[CourseProgress]:
        enrollment = await EnrollmentStore.get_enrollment(db, user_id, course_id)
        if not enrollment:
            return None
        total_lessons = await CourseStore.get_lesson_count(db, course_id)
        return EnrollmentService._progress(enrollment, total_lessons)

    @staticmethod
    def _progress(enrollment: dict, total_lessons: int) -> CourseProgress:
        lessons_seen = CompletionStore.parse_lessons_seen(enrollment)
        completed = CompletionStore.count_viewed(lessons_seen)
        return CourseProgress(
            user_id=enrollment["user_id"],
            course_id=enrollment["course_id"],
            completed_lessons=completed,
            total_lessons=total_lessons,
            progress=round(completion_progress(completed, total_lessons), 2),
            all_lessons_viewed=enrollment.get("all_lessons_viewed", False),
            lessons_seen=lessons_seen,
            enrolled_at=enrollment.get("enrolled_at"),
            rating=enrollment.get("rating"),
            review=enrollment.get("review")
        )
