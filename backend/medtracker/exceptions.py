class AppError(Exception):
    """An expected, client-facing error carrying its HTTP status."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"


class ValidationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, 400)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized access"):
        super().__init__(message, 401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden access"):
        super().__init__(message, 403)


class NotFoundError(AppError):
    def __init__(self, resource: str = "Resource"):
        self.resource = resource
        super().__init__(f"{resource} not found", 404)


class DuplicateError(AppError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Duplicate {field}", 409)


class RateLimitError(AppError):
    def __init__(self, message: str = "Too many authentication attempts, please try again later."):
        super().__init__(message, 429)
