from typing import Any, Dict


class GraphError(Exception):
    """Base class for failures talking to the external graph gateway."""

    code = "graph_error"

    def __init__(self, message: str, status: int | None = None, details: Dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details or {}


class GraphConfigError(GraphError):
    """Gateway credentials or endpoints are missing. Fatal, never degraded."""

    code = "config_error"


class RecommendationSourceUnavailable(GraphError):
    """Network error, timeout, 5xx, auth failure or an unreadable payload."""

    code = "service_unavailable"


class GraphRequestError(GraphError):
    """The gateway rejected a request (4xx)."""

    code = "graph_request_rejected"


class CourseNotFound(LookupError):
    def __init__(self, course_id: str):
        super().__init__(f"course {course_id} not found")
        self.course_id = course_id
