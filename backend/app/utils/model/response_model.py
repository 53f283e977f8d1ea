"""
Unified Response Model

Standardized API response envelope: ``{code, message, data}``.
"""

from typing import Any, List, Optional
from pydantic import BaseModel, Field
from .response_code import ResponseCode


class BaseResponse(BaseModel):
    """Base response model for all API endpoints"""

    code: int = Field(ResponseCode.SUCCESS, description="API status code")
    message: str = Field("success", description="API status message")
    data: Optional[Any] = Field(None, description="API data")

    model_config = {
        "arbitrary_types_allowed": True,
        "json_schema_extra": {
            "example": {
                "code": 200,
                "message": "success",
                "data": None
            }
        }
    }

    @classmethod
    def _with_code(cls, code: int, data: Any = None, message: Optional[str] = None):
        return cls(code=code, message=message or ResponseCode.get_message(code), data=data)

    @classmethod
    def success(cls, data: Any = None, message: Optional[str] = None):
        """Create success response"""
        return cls._with_code(ResponseCode.SUCCESS, data, message)

    @classmethod
    def error(cls, data: Any = None, message: Optional[str] = None, code: Optional[int] = None):
        """Create error response, 500 unless a code is given"""
        return cls._with_code(code or ResponseCode.INTERNAL_SERVER_ERROR, data, message)

    @classmethod
    def created(cls, data: Any = None, message: Optional[str] = None):
        """Create response for resource creation"""
        return cls._with_code(ResponseCode.CREATED, data, message)

    @classmethod
    def not_found(cls, data: Any = None, message: Optional[str] = None):
        """Create response for resource not found"""
        return cls._with_code(ResponseCode.NOT_FOUND, data, message)

    @classmethod
    def unauthorized(cls, data: Any = None, message: Optional[str] = None):
        """Create response for unauthorized access"""
        return cls._with_code(ResponseCode.UNAUTHORIZED, data, message)

    @classmethod
    def forbidden(cls, data: Any = None, message: Optional[str] = None):
        """Create response for forbidden access"""
        return cls._with_code(ResponseCode.FORBIDDEN, data, message)

    @classmethod
    def bad_request(cls, data: Any = None, message: Optional[str] = None):
        """Create response for bad request"""
        return cls._with_code(ResponseCode.BAD_REQUEST, data, message)

    @classmethod
    def validation_error(cls, data: Any = None, message: Optional[str] = None):
        """Create response for validation error"""
        return cls._with_code(ResponseCode.VALIDATION_ERROR, data, message)


class ListResponse(BaseResponse):
    """Response model for list endpoints"""

    @classmethod
    def success(cls, items: List[Any], total: Optional[int] = None, message: Optional[str] = None):
        """
        Create success response for list data

        Args:
            items: List of items
            total: Total count, defaults to ``len(items)``
            message: Custom message

        Returns:
            BaseResponse with ``{"items", "total"}`` data
        """
        data = {
            "items": items,
            "total": total if total is not None else len(items)
        }
        return cls._with_code(ResponseCode.SUCCESS, data, message)
