"""
Persistency Exception Classes

Typed failures of the draft queue and the persistence synchronizer.
"""

from typing import Optional

from .base_exceptions import BusinessException, ForbiddenError


# ============================================================================
# Draft path normalization
# ============================================================================

class InvalidPathError(BusinessException):
    """Draft path failed normalization. User-correctable."""

    error = "invalid"
    default_message = "Draft path is invalid."

    def __init__(self, message: Optional[str] = None, path: Optional[str] = None):
        self.path = path
        super().__init__(message=message or self.default_message, code=400, data={"path": path})

    @property
    def kind(self) -> str:
        return self.error


class PathOutOfScopeError(InvalidPathError):
    """Path does not resolve under the persistency root, or contains traversal."""

    error = "out_of_scope"
    default_message = "Draft paths must live under the `ai/` directory."


class ExtensionRequiredError(InvalidPathError):
    """Path does not carry the mandated document extension."""

    error = "extension_required"
    default_message = "Draft paths must use the `.mdc` extension."


class WriteModeDisabledError(ForbiddenError):
    """The session does not allow the assistant to write drafts."""

    error = "persistence_disabled"

    def __init__(self, message: str = "Write mode is disabled for this session."):
        super().__init__(message=message)


# ============================================================================
# Persistence synchronizer
# ============================================================================

class NoPendingChangesError(BusinessException):
    """Nothing to persist. Informational rather than a failure."""

    error = "no_pending_ai_changes"

    def __init__(self, message: str = "There are no pending persistency changes to submit."):
        super().__init__(message=message, code=200)


class BranchUnavailableError(BusinessException):
    """The destination branch vanished upstream."""

    error = "branch_unavailable"

    def __init__(self, branch: str, message: Optional[str] = None):
        self.branch = branch
        super().__init__(
            message=message or f"Branch '{branch}' is no longer available. This session is read-only.",
            code=409,
            data={"branch": branch},
        )


class RemoteOperationError(BusinessException):
    """A remote call failed; safe to retry, no local state was mutated."""

    error = "remote_request_failed"
    default_message = "The Bitbucket request failed. Please try again."

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(
            message=message or self.default_message,
            code=502,
            data={"status_code": status_code},
        )


class RemoteRequestError(RemoteOperationError):
    """Listing or lookup failure not covered by a more specific error."""


class FailedToCreateBranchError(RemoteOperationError):
    error = "failed_to_create_branch"
    default_message = "Failed to create the session branch on Bitbucket."


class RemoteCommitFailedError(RemoteOperationError):
    error = "commit_failed"
    default_message = "Failed to commit persistency changes to Bitbucket."


class RemotePRFailedError(RemoteOperationError):
    error = "pull_request_failed"
    default_message = "Failed to open the pull request on Bitbucket."


class RemotePRUpdateFailedError(RemoteOperationError):
    error = "pull_request_update_failed"
    default_message = "Failed to update the pull request title on Bitbucket."


class ConfigurationMissingError(BusinessException):
    """A required server-side integration is not configured."""

    error = "configuration_missing"

    def __init__(self, message: str = "Bitbucket OAuth is not configured on the server."):
        super().__init__(message=message, code=500)
