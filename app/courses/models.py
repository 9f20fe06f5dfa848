from pydantic import BaseModel, Field, validator
from typing import List, Optional, Dict
from datetime import datetime

# ==================== AGGREGATE MODELS ====================

class CourseAggregate(BaseModel):
    """Per-course rating aggregate, stored under courses.stats"""
    total_ratings: int = Field(0, ge=0)
    average_rating: float = Field(0.0, ge=0, le=5)
    # Exact sum of current ratings; None on documents written before it existed
    rating_sum: Optional[int] = None

    @classmethod
    def from_stats(cls, stats: Optional[dict]) -> "CourseAggregate":
        stats = stats or {}
        return cls(
            total_ratings=stats.get("total_ratings") or 0,
            average_rating=stats.get("average_rating") or 0.0,
            rating_sum=stats.get("rating_sum"),
        )

# ==================== RATING MODELS ====================

class RatingSubmit(BaseModel):
    rating: int
    review: str = ""

    @validator("review", pre=True)
    def none_review_is_empty(cls, v):
        return v or ""

class UserRatingRecord(BaseModel):
    # rating is not range-checked here: stored records may be corrupt and
    # readers decide how to treat them
    user_id: str
    course_id: str
    rating: int
    review: str = ""
    submitted_at: datetime
    user_name: str = "Anonymous"
    user_email: str = ""

    @classmethod
    def from_enrollment(cls, enrollment: dict) -> "UserRatingRecord":
        return cls(
            user_id=enrollment["user_id"],
            course_id=enrollment["course_id"],
            rating=enrollment["rating"],
            review=enrollment.get("review") or "",
            submitted_at=enrollment.get("rated_at") or datetime.utcnow(),
            user_name=enrollment.get("user_name") or "Anonymous",
            user_email=enrollment.get("user_email") or "",
        )

class CourseRatingSummary(BaseModel):
    course_id: str
    total_ratings: int
    average_rating: float
    rating_distribution: Dict[int, int]
    reviews: List[UserRatingRecord] = []

class RatingSubmissionResult(BaseModel):
    course_id: str
    user_id: str
    rating: int
    is_update: bool
    aggregate: CourseAggregate

class RatingPromptResponse(BaseModel):
    course_id: str
    should_prompt: bool

# ==================== ENROLLMENT MODELS ====================

class EnrollmentCreate(BaseModel):
    course_id: str

class LessonView(BaseModel):
    lesson_id: str
    viewed: bool = False

class LessonViewUpdate(BaseModel):
    viewed: bool = True

class CourseProgress(BaseModel):
    user_id: str
    course_id: str
    completed_lessons: int
    total_lessons: int
    progress: float
    all_lessons_viewed: bool = False
    lessons_seen: List[LessonView] = []
    enrolled_at: Optional[datetime] = None
    rating: Optional[int] = None
    review: Optional[str] = None
