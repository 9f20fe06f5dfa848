"""
Rating aggregation and prompt policy
Pure functions: no database access, safe to re-run on transaction retry
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from app.courses.config import PROMPT_MIN_PROGRESS_PERCENT, SINGLE_LESSON_MIN_PROGRESS_PERCENT
from app.courses.errors import InvalidRating, CorruptAggregate
from app.courses.models import CourseAggregate, CourseRatingSummary, UserRatingRecord

MIN_RATING = 1
MAX_RATING = 5


def is_valid_rating(value) -> bool:
    # bool is an int subclass; True must not count as a 1-star rating
    return isinstance(value, int) and not isinstance(value, bool) and MIN_RATING <= value <= MAX_RATING


def validate_rating(value) -> int:
    if not is_valid_rating(value):
        raise InvalidRating(value)
    return value


def round_rating(value: float) -> float:
    """Round half-up to one decimal place (3.25 -> 3.3)"""
    return float(Decimal(repr(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


# ==================== AGGREGATOR ====================

def apply_rating(
    current: CourseAggregate,
    previous_rating: Optional[int],
    new_rating: int
) -> CourseAggregate:
    """
    Compute the course aggregate after one user submits or changes a rating.

    The running total is taken from ``rating_sum`` when the aggregate has one,
    otherwise reconstructed as ``average_rating * total_ratings``. Rounding is
    applied once, to the returned average.

    Args:
        current: Aggregate as read inside the transaction
        previous_rating: The user's earlier rating, or None for a first rating
        new_rating: Rating being submitted (1-5)

    Returns:
        New aggregate; ``current`` is left untouched

    Raises:
        InvalidRating: new_rating outside 1-5
        CorruptAggregate: previous_rating is out of range or the stored
            aggregate cannot include it
    """
    validate_rating(new_rating)

    if current.rating_sum is not None:
        total_score = current.rating_sum
    else:
        total_score = current.average_rating * current.total_ratings

    if previous_rating is not None:
        if not is_valid_rating(previous_rating):
            raise CorruptAggregate(f"Stored previous rating {previous_rating!r} is out of range")
        if current.total_ratings < 1:
            raise CorruptAggregate(
                f"Aggregate has {current.total_ratings} ratings but a previous rating "
                f"of {previous_rating} is being replaced"
            )
        total_ratings = current.total_ratings
        total_score = total_score - previous_rating + new_rating
    else:
        total_ratings = current.total_ratings + 1
        total_score = total_score + new_rating

    rating_sum = int(round(total_score))
    if not MIN_RATING * total_ratings <= rating_sum <= MAX_RATING * total_ratings:
        raise CorruptAggregate(
            f"Rating sum {rating_sum} is impossible for {total_ratings} ratings"
        )

    return CourseAggregate(
        total_ratings=total_ratings,
        average_rating=round_rating(total_score / total_ratings),
        rating_sum=rating_sum,
    )


# ==================== PROMPT POLICY ====================

def completion_progress(completed_lessons: int, total_lessons: int) -> float:
    """Completed lessons as a percentage of the course (0 for empty courses)"""
    if total_lessons <= 0:
        return 0.0
    return completed_lessons / total_lessons * 100


def should_prompt(has_existing_rating: bool, total_lessons: int, completed_lessons_count: int) -> bool:
    """
    Decide whether to ask a learner to rate a course.

    Never re-prompts someone who has rated. Single-lesson courses need the
    lesson finished; longer courses prompt from halfway.
    """
    if has_existing_rating:
        return False
    if total_lessons <= 0:
        return False

    progress = completion_progress(completed_lessons_count, total_lessons)

    if total_lessons == 1:
        return progress >= SINGLE_LESSON_MIN_PROGRESS_PERCENT
    return progress >= PROMPT_MIN_PROGRESS_PERCENT


# ==================== SUMMARY ====================

def empty_distribution() -> dict:
    return {star: 0 for star in range(MIN_RATING, MAX_RATING + 1)}


def summarize_ratings(
    course_id: str,
    all_ratings: Iterable[UserRatingRecord],
    fallback_aggregate: Optional[CourseAggregate]
) -> CourseRatingSummary:
    """
    Build the ratings panel data for a course.

    The stored aggregate is used for count and average whenever it has
    ratings; the listing is only averaged directly when the aggregate is
    missing or empty. Out-of-range records never reach the distribution,
    and on the direct path they are left out of count and average too.
    """
    records = list(all_ratings)
    distribution = empty_distribution()
    valid_values = []

    for record in records:
        if is_valid_rating(record.rating):
            distribution[record.rating] += 1
            valid_values.append(record.rating)

    if fallback_aggregate is not None and fallback_aggregate.total_ratings > 0:
        total_ratings = fallback_aggregate.total_ratings
        average_rating = fallback_aggregate.average_rating
    else:
        total_ratings = len(valid_values)
        average_rating = round_rating(sum(valid_values) / total_ratings) if total_ratings else 0.0

    reviews = [record for record in records if record.review and record.review.strip()]

    return CourseRatingSummary(
        course_id=course_id,
        total_ratings=total_ratings,
        average_rating=average_rating,
        rating_distribution=distribution,
        reviews=reviews,
    )
