"""
Centralized exception definitions for the backend application.
"""

class AppError(Exception):
    """Base class for application errors."""
    def __init__(self, message: str, status_code: int = 500, detail: str = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail or message

class NotFoundError(AppError):
    """Raised when a resource is not found."""
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)

class ValidationError(AppError):
    """Raised when input validation fails."""
    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, status_code=400)

class ConflictError(AppError):
    """Raised when there is a resource conflict."""
    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, status_code=409)

class InvalidTransitionError(ConflictError):
    """Raised when a job event is not legal for the job's current status."""
    pass

class TranscodeError(AppError):
    """
    Raised when the encoder fails.

    Retryable errors go through the queue's retry policy; the others
    fail the job straight away.
    """
    def __init__(self, message: str = "Transcode failed", retryable: bool = True):
        super().__init__(message, status_code=422)
        self.retryable = retryable

class CapacityError(AppError):
    """Raised when the job queue is full."""
    def __init__(self, message: str = "Transcode queue is full"):
        super().__init__(message, status_code=503)
