"""
Rating error taxonomy
Raised by the rating logic and services, translated to HTTP by the routers
"""


class RatingError(Exception):
    """Base class for course rating failures"""


class InvalidRating(RatingError):
    def __init__(self, value):
        self.value = value
        super().__init__(f"Invalid rating: {value!r}. Must be an integer from 1 to 5")


class EnrollmentNotFound(RatingError):
    def __init__(self, user_id: str, course_id: str):
        self.user_id = user_id
        self.course_id = course_id
        super().__init__(f"User {user_id} is not enrolled in course {course_id}")


class CourseNotFound(RatingError):
    def __init__(self, course_id: str):
        self.course_id = course_id
        super().__init__(f"Course {course_id} not found")


class CorruptAggregate(RatingError):
    """Stored aggregate cannot contain the rating being replaced"""


class TransactionConflict(RatingError):
    """Concurrent writers kept aborting the transaction; safe to retry"""


class StoreUnavailable(RatingError):
    """Backend or transport failure; nothing was committed"""
