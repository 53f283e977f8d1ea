"""
Exception Classes

Contains all custom exception types for the application.
"""

from .base_exceptions import (
    BusinessException,
    NotFoundError,
    UnauthorizedError,
    ForbiddenError,
)

from .persistency_exceptions import (
    InvalidPathError,
    PathOutOfScopeError,
    ExtensionRequiredError,
    WriteModeDisabledError,
    NoPendingChangesError,
    BranchUnavailableError,
    RemoteOperationError,
    RemoteRequestError,
    FailedToCreateBranchError,
    RemoteCommitFailedError,
    RemotePRFailedError,
    RemotePRUpdateFailedError,
    ConfigurationMissingError,
)

from .exception_handlers import (
    register_exception_handlers,
    validation_exception_handler,
    http_exception_handler,
    business_exception_handler,
    unauthorized_exception_handler,
    general_exception_handler,
    carry_credential_cookies,
    CREDENTIAL_STORE_STATE,
)

__all__ = [
    "BusinessException",
    "NotFoundError",
    "UnauthorizedError",
    "ForbiddenError",
    "InvalidPathError",
    "PathOutOfScopeError",
    "ExtensionRequiredError",
    "WriteModeDisabledError",
    "NoPendingChangesError",
    "BranchUnavailableError",
    "RemoteOperationError",
    "RemoteRequestError",
    "FailedToCreateBranchError",
    "RemoteCommitFailedError",
    "RemotePRFailedError",
    "RemotePRUpdateFailedError",
    "ConfigurationMissingError",
    "register_exception_handlers",
    "validation_exception_handler",
    "http_exception_handler",
    "business_exception_handler",
    "unauthorized_exception_handler",
    "general_exception_handler",
    "carry_credential_cookies",
    "CREDENTIAL_STORE_STATE",
]
