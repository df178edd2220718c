"""
Grading errors

Each error carries the HTTP status and a stable error code so the
transport layer can report it without knowing the domain.
"""
from typing import Any, Dict, Optional


class GradingError(Exception):
    """Base error for the grading engine"""

    status_code = 400
    error_code = "GRADING_ERROR"

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code,
            **self.extra,
        }


# === VALIDATION ===

class InvalidPeriodError(GradingError):
    """Period identifier is not of the form YYYY-Bn"""

    error_code = "INVALID_PERIOD"

    def __init__(self, period: Any):
        super().__init__(
            f"Invalid period '{period}'; expected YYYY-B1 .. YYYY-B4",
            extra={"period": period},
        )


class FuturePeriodError(GradingError):
    error_code = "FUTURE_PERIOD"

    def __init__(self, period: str, current: str):
        super().__init__(
            f"Period {period} is after the current period {current}",
            extra={"period": period, "current_bimester": current},
        )


class PeriodClosedError(GradingError):
    """A closed period cannot become the current period"""

    error_code = "PERIOD_CLOSED"

    def __init__(self, period: str):
        super().__init__(
            f"Period {period} is closed; reopen it before making it current",
            extra={"period": period},
        )


class PeriodAlreadyClosedError(GradingError):
    error_code = "PERIOD_ALREADY_CLOSED"

    def __init__(self, period: str):
        super().__init__(f"Period {period} is already closed", extra={"period": period})


class PeriodNotClosedError(GradingError):
    error_code = "PERIOD_NOT_CLOSED"

    def __init__(self, period: str):
        super().__init__(f"Period {period} is not closed", extra={"period": period})


class InvalidScoreError(GradingError):
    error_code = "INVALID_SCORE"

    def __init__(self, score: Any):
        super().__init__(f"Score must be a number between 0 and 100, got {score!r}")


# === NOT FOUND ===

class NotFoundError(GradingError):
    status_code = 404
    error_code = "NOT_FOUND"


class ClassroomNotFoundError(NotFoundError):
    error_code = "CLASSROOM_NOT_FOUND"

    def __init__(self, classroom_id: Any):
        super().__init__(f"Classroom '{classroom_id}' not found", extra={"classroom_id": classroom_id})


class StudentNotFoundError(NotFoundError):
    error_code = "STUDENT_NOT_FOUND"

    def __init__(self, student_id: Any):
        super().__init__(f"Student '{student_id}' not found", extra={"student_id": student_id})


class GradeNotFoundError(NotFoundError):
    error_code = "GRADE_NOT_FOUND"

    def __init__(self, grade_id: Any):
        super().__init__(f"Grade '{grade_id}' not found", extra={"grade_id": grade_id})
