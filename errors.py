"""
API errors

Route handlers raise these; the handlers registered in main.py turn them into
a JSON body of the form {"message": ..., "error": ...}.
"""


class APIError(Exception):
    status_code = 500

    def __init__(self, message: str, error: str = None, **extra):
        super().__init__(message)
        self.message = message
        self.error = error or message
        self.extra = extra

    def to_dict(self) -> dict:
        return {**self.extra, "message": self.message, "error": self.error}


class ValidationFailed(APIError):
    status_code = 400


class Unauthenticated(APIError):
    status_code = 401


class Forbidden(APIError):
    status_code = 403


class NotFound(APIError):
    status_code = 404


class Conflict(APIError):
    status_code = 409


class Gone(APIError):
    status_code = 410


class InternalError(APIError):
    status_code = 500
