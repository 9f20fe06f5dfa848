from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorClientSession
from pymongo import ReturnDocument
from datetime import datetime
from typing import List, Optional
import logging
import uuid

from app.courses.models import CourseAggregate, LessonView

logger = logging.getLogger(__name__)

# ==================== SERIALIZATION ====================

def serialize_mongo(doc: dict) -> dict:
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc

def serialize_many(docs: list[dict]) -> list[dict]:
    return [serialize_mongo(doc) for doc in docs]

# ==================== INDEXES ====================

async def create_rating_indexes(db: AsyncIOMotorDatabase):
    """Create MongoDB indexes used by enrollments and ratings"""
    await db.courses.create_index("course_id", unique=True)
    await db.courses.create_index([
        ("stats.total_ratings", 1),
        ("stats.average_rating", -1)
    ])

    # One enrollment (and so one rating) per user per course
    await db.course_enrollments.create_index("enrollment_id", unique=True)
    await db.course_enrollments.create_index([("user_id", 1), ("course_id", 1)], unique=True)
    await db.course_enrollments.create_index([("course_id", 1), ("rated_at", -1)])

    await db.user_profiles.create_index("user_id", unique=True)

    logger.info("Course rating indexes created")

# ==================== USER PROFILES ====================

class UserStore:

    @staticmethod
    async def get_profile(db: AsyncIOMotorDatabase, user_id: str) -> Optional[dict]:
        return await db.user_profiles.find_one({"user_id": user_id})

# ==================== COURSES ====================

class CourseStore:
    """Course documents and their rating aggregate (courses.stats)"""

    @staticmethod
    async def get_course(
        db: AsyncIOMotorDatabase,
        course_id: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> Optional[dict]:
        return await db.courses.find_one({"course_id": course_id}, session=session)

    @staticmethod
    async def get_aggregate(
        db: AsyncIOMotorDatabase,
        course_id: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> Optional[CourseAggregate]:
        """Rating aggregate for a course, None if the course does not exist"""
        course = await CourseStore.get_course(db, course_id, session=session)
        if not course:
            return None
        return CourseAggregate.from_stats(course.get("stats"))

    @staticmethod
    async def update_aggregate(
        db: AsyncIOMotorDatabase,
        course_id: str,
        aggregate: CourseAggregate,
        session: Optional[AsyncIOMotorClientSession] = None
    ):
        await db.courses.update_one(
            {"course_id": course_id},
            {"$set": {
                "stats.total_ratings": aggregate.total_ratings,
                "stats.average_rating": aggregate.average_rating,
                "stats.rating_sum": aggregate.rating_sum,
                "updated_at": datetime.utcnow()
            }},
            session=session
        )

    @staticmethod
    def lesson_count(course: Optional[dict]) -> int:
        """total_lessons is the one source of lesson count"""
        if not course:
            return 0
        return course.get("total_lessons") or 0

    @staticmethod
    async def get_lesson_count(db: AsyncIOMotorDatabase, course_id: str) -> int:
        course = await CourseStore.get_course(db, course_id)
        return CourseStore.lesson_count(course)

    @staticmethod
    async def increment_enrollments(db: AsyncIOMotorDatabase, course_id: str):
        await db.courses.update_one(
            {"course_id": course_id},
            {
                "$inc": {"stats.enrollments": 1},
                "$set": {"updated_at": datetime.utcnow()}
            }
        )

    @staticmethod
    async def top_rated(db: AsyncIOMotorDatabase, min_ratings: int, limit: int) -> List[dict]:
        """Courses with at least min_ratings ratings, best average first"""
        cursor = db.courses.find(
            {"stats.total_ratings": {"$gte": min_ratings}}
        ).sort("stats.average_rating", -1).limit(limit)
        return await cursor.to_list(length=limit)

# ==================== ENROLLMENTS ====================

class EnrollmentStore:
    """Per-user, per-course enrollment records carrying rating and lesson views"""

    @staticmethod
    async def get_enrollment(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ) -> Optional[dict]:
        return await db.course_enrollments.find_one(
            {"course_id": course_id, "user_id": user_id},
            session=session
        )

    @staticmethod
    async def create_enrollment(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str,
        user_name: str,
        user_email: str
    ) -> dict:
        enrollment = {
            "enrollment_id": f"ENR_{uuid.uuid4().hex[:12].upper()}",
            "course_id": course_id,
            "user_id": user_id,
            "user_name": user_name,
            "user_email": user_email,
            "enrolled_at": datetime.utcnow(),
            "lessons_seen": [],
            "all_lessons_viewed": False
        }
        await db.course_enrollments.insert_one(enrollment)
        return enrollment

    @staticmethod
    async def upsert_rating(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str,
        rating: int,
        review: str,
        submitted_at: datetime,
        user_name: str,
        user_email: str,
        session: Optional[AsyncIOMotorClientSession] = None
    ):
        """Write the user's rating onto their enrollment, replacing any earlier one"""
        await db.course_enrollments.update_one(
            {"course_id": course_id, "user_id": user_id},
            {"$set": {
                "rating": rating,
                "review": review,
                "rated_at": submitted_at,
                "user_name": user_name,
                "user_email": user_email
            }},
            session=session
        )

    @staticmethod
    async def set_lesson_viewed(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str,
        lesson_id: str,
        viewed: bool
    ) -> Optional[dict]:
        """
        Set one lesson's viewed flag, appending the lesson if it is not listed yet.

        Each write touches only its own lesson entry, so views of different
        lessons landing together all survive. Returns the enrollment as it
        stands right after this write, or None if the user is not enrolled.
        """
        enrollment_filter = {"course_id": course_id, "user_id": user_id}
        # A concurrent append of the same lesson makes the guarded $push miss;
        # the next pass then updates that entry in place.
        for _ in range(2):
            enrollment = await db.course_enrollments.find_one_and_update(
                {**enrollment_filter, "lessons_seen.lesson_id": lesson_id},
                {"$set": {"lessons_seen.$.viewed": viewed}},
                return_document=ReturnDocument.AFTER
            )
            if enrollment:
                return enrollment
            enrollment = await db.course_enrollments.find_one_and_update(
                {**enrollment_filter, "lessons_seen.lesson_id": {"$ne": lesson_id}},
                {"$push": {"lessons_seen": LessonView(lesson_id=lesson_id, viewed=viewed).dict()}},
                return_document=ReturnDocument.AFTER
            )
            if enrollment:
                return enrollment
        return None

    @staticmethod
    async def set_all_lessons_viewed(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str,
        lessons_seen: List[dict],
        all_lessons_viewed: bool
    ) -> bool:
        """
        Store the all-viewed flag only while lessons_seen still equals the
        list it was computed from. A miss means a later lesson write exists,
        and that writer stores the flag for the newer list.
        """
        result = await db.course_enrollments.update_one(
            {"course_id": course_id, "user_id": user_id, "lessons_seen": lessons_seen},
            {"$set": {"all_lessons_viewed": all_lessons_viewed}}
        )
        return result.matched_count > 0

    @staticmethod
    async def list_ratings(
        db: AsyncIOMotorDatabase,
        course_id: str,
        limit: Optional[int] = None
    ) -> List[dict]:
        """Rated enrollments for a course, newest rating first"""
        cursor = db.course_enrollments.find(
            {"course_id": course_id, "rating": {"$ne": None}}
        ).sort("rated_at", -1)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=limit)

# ==================== COMPLETION ====================

class CompletionStore:

    @staticmethod
    def parse_lessons_seen(enrollment: Optional[dict]) -> List[LessonView]:
        if not enrollment:
            return []
        return [LessonView(**lesson) for lesson in enrollment.get("lessons_seen") or []]

    @staticmethod
    def count_viewed(lessons_seen: List[LessonView]) -> int:
        return sum(1 for lesson in lessons_seen if lesson.viewed)

    @staticmethod
    async def get_completed_count(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> int:
        enrollment = await EnrollmentStore.get_enrollment(db, user_id, course_id)
        return CompletionStore.count_viewed(CompletionStore.parse_lessons_seen(enrollment))
