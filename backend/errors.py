from __future__ import annotations


class FeedflowError(Exception):
    """Base class for domain errors; ``status_code`` is the HTTP status they map to."""
    status_code = 500


class InvalidRequest(FeedflowError):
    """Malformed request shape or unsupported parameter (e.g. export format)."""
    status_code = 400


class Unauthorized(FeedflowError):
    """Missing, malformed or expired credentials."""
    status_code = 401


class Forbidden(FeedflowError):
    """Authenticated, but the role or tenant does not allow the action."""
    status_code = 403


class NotFound(FeedflowError):
    """Resource absent or owned by another tenant."""
    status_code = 404


class SurveyNotFound(NotFound):
    def __init__(self, survey_id):
        super().__init__(f"Survey {survey_id} not found for this company")
        self.survey_id = survey_id


class Conflict(FeedflowError):
    """Unique constraint clash (duplicate NIT, duplicate email)."""
    status_code = 409
