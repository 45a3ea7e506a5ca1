class SurveyHubError(Exception):
    """Base class for errors raised by the survey domain layer."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(SurveyHubError):
    status_code = 404


class InvalidInputError(SurveyHubError):
    status_code = 422


class SurveyClosedError(SurveyHubError):
    status_code = 403


class PersistenceError(SurveyHubError):
    status_code = 500


class ForbiddenError(SurveyHubError):
    status_code = 403
