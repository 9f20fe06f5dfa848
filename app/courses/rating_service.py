"""
Course rating service
Submits ratings inside a MongoDB transaction and serves rating views
"""

import logging
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from app.courses.config import (
    RATING_TRANSACTION_MAX_RETRIES, RECENT_RATINGS_LIMIT,
    TOP_RATED_MIN_RATINGS, TOP_RATED_LIMIT
)
from app.courses.database import (
    CourseStore, EnrollmentStore, CompletionStore, UserStore, serialize_many
)
from app.courses.errors import (
    EnrollmentNotFound, CourseNotFound, TransactionConflict, StoreUnavailable
)
from app.courses.models import (
    CourseRatingSummary, RatingSubmissionResult, UserRatingRecord
)
from app.courses.rating_logic import (
    apply_rating, validate_rating, should_prompt, summarize_ratings
)

logger = logging.getLogger(__name__)

RETRYABLE_LABELS = ("TransientTransactionError", "UnknownTransactionCommitResult")


def is_retryable(error: PyMongoError) -> bool:
    return any(error.has_error_label(label) for label in RETRYABLE_LABELS)


class RatingService:
    """Rating submission and read paths for course ratings"""

    # ==================== SUBMISSION ====================

    @staticmethod
    async def submit_course_rating(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str,
        rating: int,
        review: str = "",
        max_retries: int = RATING_TRANSACTION_MAX_RETRIES
    ) -> RatingSubmissionResult:
        """
        Submit or replace a user's rating for a course.

        The enrollment and course aggregate are read, checked and written
        back in one transaction. Transient conflicts restart the whole
        transaction with fresh reads.

        Raises:
            InvalidRating: rating outside 1-5 (no database access happens)
            EnrollmentNotFound: user is not enrolled in the course
            CourseNotFound: course document does not exist
            CorruptAggregate: stored aggregate is inconsistent with the user's old rating
            TransactionConflict: retries exhausted under concurrent writers
            StoreUnavailable: database failure, nothing committed
        """
        validate_rating(rating)
        review = review or ""
        logger.info(f"Submitting rating {rating} for course {course_id} by user {user_id}")

        try:
            profile = await UserStore.get_profile(db, user_id) or {}
        except PyMongoError as e:
            logger.error(f"Failed to load profile for {user_id}: {e}")
            raise StoreUnavailable(str(e)) from e

        user_name = profile.get("full_name") or "Anonymous"
        user_email = profile.get("email") or ""

        attempt = 0
        while True:
            attempt += 1
            try:
                result = await RatingService._rating_transaction(
                    db, user_id, course_id, rating, review, user_name, user_email
                )
            except PyMongoError as e:
                if is_retryable(e) and attempt < max_retries:
                    logger.warning(
                        f"Rating transaction for course {course_id} conflicted "
                        f"(attempt {attempt}/{max_retries}), retrying: {e}"
                    )
                    continue
                if isinstance(e, ConnectionFailure) or not is_retryable(e):
                    logger.error(f"Rating transaction for course {course_id} failed: {e}")
                    raise StoreUnavailable(str(e)) from e
                logger.error(f"Rating transaction for course {course_id} gave up after {attempt} attempts")
                raise TransactionConflict(
                    f"Course {course_id} rating conflicted {attempt} times"
                ) from e

            agg = result.aggregate
            logger.info(
                f"Course {course_id} updated: {agg.total_ratings} ratings, "
                f"{agg.average_rating} average ({'update' if result.is_update else 'new'})"
            )
            return result

    @staticmethod
    async def _rating_transaction(
        db: AsyncIOMotorDatabase,
        user_id: str,
        course_id: str,
        rating: int,
        review: str,
        user_name: str,
        user_email: str
    ) -> RatingSubmissionResult:
        async with await db.client.start_session() as session:
            async with session.start_transaction(
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority")
            ):
                # Reads
                enrollment = await EnrollmentStore.get_enrollment(db, user_id, course_id, session=session)
                aggregate = await CourseStore.get_aggregate(db, course_id, session=session)

                # Validate
                if not enrollment:
                    raise EnrollmentNotFound(user_id, course_id)
                if aggregate is None:
                    raise CourseNotFound(course_id)

                previous_rating = enrollment.get("rating")
                new_aggregate = apply_rating(aggregate, previous_rating, rating)

                # Writes
                await EnrollmentStore.upsert_rating(
                    db, user_id, course_id, rating, review, datetime.utcnow(),
                    user_name, user_email, session=session
                )
                await CourseStore.update_aggregate(db, course_id, new_aggregate, session=session)

        return RatingSubmissionResult(
            course_id=course_id,
            user_id=user_id,
            rating=rating,
            is_update=previous_rating is not None,
            aggregate=new_aggregate
        )

    # ==================== READS ====================

    @staticmethod
    async def get_user_rating(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> Optional[UserRatingRecord]:
        enrollment = await EnrollmentStore.get_enrollment(db, user_id, course_id)
        if not enrollment or enrollment.get("rating") is None:
            return None
        return UserRatingRecord.from_enrollment(enrollment)

    @staticmethod
    async def has_user_rated_course(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> bool:
        return await RatingService.get_user_rating(db, user_id, course_id) is not None

    @staticmethod
    async def get_course_ratings(db: AsyncIOMotorDatabase, course_id: str) -> List[UserRatingRecord]:
        """All ratings for a course, newest first"""
        enrollments = await EnrollmentStore.list_ratings(db, course_id)
        ratings = [UserRatingRecord.from_enrollment(e) for e in enrollments]
        logger.debug(f"Found {len(ratings)} ratings for course {course_id}")
        return ratings

    @staticmethod
    async def get_recent_course_ratings(
        db: AsyncIOMotorDatabase,
        course_id: str,
        limit: int = RECENT_RATINGS_LIMIT
    ) -> List[UserRatingRecord]:
        enrollments = await EnrollmentStore.list_ratings(db, course_id, limit=limit)
        return [UserRatingRecord.from_enrollment(e) for e in enrollments]

    @staticmethod
    async def get_course_rating_summary(db: AsyncIOMotorDatabase, course_id: str) -> CourseRatingSummary:
        aggregate = await CourseStore.get_aggregate(db, course_id)
        ratings = await RatingService.get_course_ratings(db, course_id)
        return summarize_ratings(course_id, ratings, aggregate)

    @staticmethod
    async def should_prompt_for_rating(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> bool:
        """
        Whether to show the rating prompt to an enrolled learner.
        Reads go to the primary, so a lesson view written by this user is
        always seen here.
        """
        enrollment = await EnrollmentStore.get_enrollment(db, user_id, course_id)
        if not enrollment:
            return False

        course = await CourseStore.get_course(db, course_id)
        if not course:
            return False

        return should_prompt(
            has_existing_rating=enrollment.get("rating") is not None,
            total_lessons=CourseStore.lesson_count(course),
            completed_lessons_count=await CompletionStore.get_completed_count(db, user_id, course_id)
        )

    @staticmethod
    async def get_top_rated_courses(db: AsyncIOMotorDatabase, limit: int = TOP_RATED_LIMIT) -> List[dict]:
        courses = await CourseStore.top_rated(db, TOP_RATED_MIN_RATINGS, limit)
        logger.debug(f"Found {len(courses)} top-rated courses")
        return serialize_many(courses)
