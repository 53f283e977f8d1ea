"""
Response Status Codes

Status codes carried in the ``code`` field of every API response.
"""


class ResponseCode:
    """Standard response status codes"""

    # Success codes (2xx)
    SUCCESS = 200
    CREATED = 201

    # Client error codes (4xx)
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409

    # Server error codes (5xx)
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502

    # Custom business codes (1xxx)
    VALIDATION_ERROR = 1001

    _MESSAGES = {
        SUCCESS: "Success",
        CREATED: "Created successfully",
        BAD_REQUEST: "Bad request",
        UNAUTHORIZED: "Unauthorized",
        FORBIDDEN: "Forbidden",
        NOT_FOUND: "Resource not found",
        CONFLICT: "Resource conflict",
        INTERNAL_SERVER_ERROR: "Internal server error",
        BAD_GATEWAY: "Upstream request failed",
        VALIDATION_ERROR: "Validation error",
    }

    @classmethod
    def get_message(cls, code: int) -> str:
        """Get default message for status code"""
        return cls._MESSAGES.get(code, "Unknown error")
