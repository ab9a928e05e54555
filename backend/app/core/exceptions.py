class AppError(Exception):
    """Base class for all application exceptions."""

    code = "internal_error"

    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AppError):
    """Raised when required input is missing or violates a business rule."""

    code = "bad_request"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)


class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""

    code = "not_found"

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with id {resource_id} not found",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class ForbiddenError(AppError):
    """Raised when the caller may not perform this state transition."""

    code = "forbidden"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=403, details=details)


class ConflictError(AppError):
    """Raised when a booking would double-book a room, teacher or student."""

    code = "conflict"

    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)


class LessonAlreadyCoveredError(ConflictError):
    """Raised to the losing side of a substitute approval race."""

    code = "already_covered"

    def __init__(self, lesson_id: str, details: dict = None):
        super().__init__(
            "Lesson is already covered by another substitute teacher",
            details={"lesson_id": lesson_id, **(details or {})},
        )
