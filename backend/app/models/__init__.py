from app.models.activity_log import ActivityLog  # noqa: F401
from app.models.booking_lane import BookingLane, BookingResource  # noqa: F401
from app.models.lesson import Lesson, LessonStatus  # noqa: F401
from app.models.notification import Notification, NotificationType  # noqa: F401
from app.models.recurring_schedule import RecurringSchedule  # noqa: F401
from app.models.room import Room  # noqa: F401
from app.models.student import StudentProfile  # noqa: F401
from app.models.substitute_request import (  # noqa: F401
    OPEN_REQUEST_STATUSES,
    SubstituteRequest,
    SubstituteRequestStatus,
)
from app.models.teacher import TeacherProfile  # noqa: F401
from app.models.teacher_absence import AbsenceStatus, TeacherAbsence  # noqa: F401
from app.models.user import User, UserRole  # noqa: F401
