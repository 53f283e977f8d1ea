"""
Business Exception Classes - Base Exception Definitions

Contains the generic business exception types shared by every layer.
"""

from typing import Optional, Any


class BusinessException(Exception):
    """
    Business Logic Exception

    ``code`` doubles as the HTTP status used by the exception handlers.
    ``error`` is a stable machine-readable identifier surfaced to clients.
    """

    error: str = "business_error"

    def __init__(self, message: str, code: int = 400, data: Any = None, error: Optional[str] = None):
        self.message = message
        self.code = code
        if error:
            self.error = error
        self.data = data
        super().__init__(self.message)

    def to_data(self) -> dict:
        """Payload attached to the error response"""
        data = {"error": self.error}
        if isinstance(self.data, dict):
            data.update(self.data)
        elif self.data is not None:
            data["details"] = self.data
        return data


class NotFoundError(BusinessException):
    """
    Resource Not Found Exception

    Used when a requested resource is not found.
    """

    error = "not_found"

    def __init__(self, message: str = "Resource not found", resource_type: Optional[str] = None, resource_id: Optional[str] = None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message=message, code=404)


class UnauthorizedError(BusinessException):
    """
    Unauthorized Access Exception

    Raised when the Bitbucket credential is missing, expired beyond refresh,
    or rejected by the remote. The stored credential has already been
    deleted when this surfaces.
    """

    error = "unauthorized"

    def __init__(self, message: str = "Bitbucket authorization required. Please log in again."):
        super().__init__(message=message, code=401)


class ForbiddenError(BusinessException):
    """
    Forbidden Access Exception

    Used when the caller is not allowed to perform the operation.
    """

    error = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message=message, code=403)
