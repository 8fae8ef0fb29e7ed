"""Service-level errors carrying the HTTP status the API should answer with"""


class ServiceError(Exception):
    """Error with a user-facing (Spanish) message and an HTTP status"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class PayrollError(ServiceError):
    pass


class StudentError(ServiceError):
    pass


class ExamValidationError(ServiceError):
    def __init__(self, message: str):
        super().__init__(400, message)


class CalendarError(ServiceError):
    pass
