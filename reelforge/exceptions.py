"""Custom exceptions for the reelforge backend.

These exceptions integrate with the envelope error handling system,
providing machine-readable error codes and suggested recovery actions.
"""

from reelforge.constants.error_codes import get_error_spec
from reelforge.schemas.envelope import ErrorInfo, ErrorLocation, SuggestedAction


class ReelforgeError(Exception):
    """Base exception for all reelforge application errors.

    Provides structured error information for envelope responses.
    """

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        location: ErrorLocation | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.location = location
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    @property
    def details(self) -> list[str]:
        return []

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        retryable = spec.get("retryable", False)

        suggested_actions: list[SuggestedAction] = []
        if "suggested_action" in spec:
            action = SuggestedAction(
                action=spec["suggested_action"],
                endpoint=spec.get("suggested_endpoint"),
                parameters=spec.get("parameters", {}),
            )
            suggested_actions.append(action)

        # Use suggested_fix from spec, or explicit override from exception
        suggested_fix = self.suggested_fix or spec.get("suggested_fix")

        return ErrorInfo(
            code=self.code,
            message=self.message,
            location=self.location,
            retryable=retryable,
            suggested_fix=suggested_fix,
            suggested_actions=suggested_actions,
            details=self.details,
        )


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class ResourceNotFoundError(ReelforgeError):
    """Base class for resource not found errors."""

    code = "NOT_FOUND"
    status_code = 404


class VideoRequestNotFoundError(ResourceNotFoundError):
    """Video request not found."""

    code = "VIDEO_NOT_FOUND"
    message = "Video request not found"

    def __init__(self, request_id: str | None = None):
        message = f"Video request not found: {request_id}" if request_id else self.message
        super().__init__(message, location=ErrorLocation(video_id=request_id) if request_id else None)


class RenderTargetNotFoundError(ResourceNotFoundError):
    """Loop render target not found."""

    code = "RENDER_NOT_FOUND"
    message = "Render target not found"

    def __init__(self, render_id: str | None = None):
        message = f"Render target not found: {render_id}" if render_id else self.message
        super().__init__(message, location=ErrorLocation(render_id=render_id) if render_id else None)


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(ReelforgeError):
    """Malformed input, rejected before any mutation."""

    code = "VALIDATION_ERROR"
    status_code = 400


class TimelineValidationError(ValidationError):
    """A built timeline failed validation; carries every violation found."""

    code = "INVALID_TIMELINE"
    message = "Timeline failed validation"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Timeline failed validation with {len(self.errors)} error(s)")

    @property
    def details(self) -> list[str]:
        return self.errors


# =============================================================================
# Conflict Errors (409)
# =============================================================================


class ConflictError(ReelforgeError):
    """Base class for conflict errors."""

    code = "CONFLICT"
    status_code = 409


class RenderConflictError(ConflictError):
    """A render is already in progress for this target."""

    code = "ALREADY_RENDERING"
    message = "This target is already being rendered"

    def __init__(self, render_id: str | None = None):
        message = f"Render already in progress: {render_id}" if render_id else self.message
        super().__init__(message, location=ErrorLocation(render_id=render_id) if render_id else None)


# =============================================================================
# External collaborator errors (502/500)
# =============================================================================


class ProviderError(ReelforgeError):
    """The generation provider failed or rejected a call."""

    code = "PROVIDER_ERROR"
    status_code = 502
    message = "Generation provider error"

    def __init__(
        self,
        message: str | None = None,
        *,
        retryable: bool = True,
        provider_job_id: str | None = None,
        code: str | None = None,
    ):
        self.retryable = retryable
        self.provider_job_id = provider_job_id
        if code is None and not retryable:
            code = "PROVIDER_REJECTED"
        location = ErrorLocation(provider_job_id=provider_job_id) if provider_job_id else None
        super().__init__(message, code=code, location=location)


class PersistenceError(ReelforgeError):
    """A store write failed.

    When ``provider_job_id`` is set the provider already accepted the job and
    the record must be recovered through the fallback synchronizer.
    """

    code = "DATABASE_ERROR"
    status_code = 500
    message = "Database error"

    def __init__(
        self,
        message: str | None = None,
        *,
        provider_job_id: str | None = None,
        request_id: str | None = None,
    ):
        self.provider_job_id = provider_job_id
        self.request_id = request_id
        code = "DB_INSERT_FAILED" if provider_job_id else None
        location = ErrorLocation(provider_job_id=provider_job_id) if provider_job_id else None
        super().__init__(message, code=code, location=location)


class RenderError(ReelforgeError):
    """Compositing/encoding failed."""

    code = "RENDER_FAILED"
    status_code = 500
    message = "Render failed"


class StorageError(ReelforgeError):
    """Artifact storage error."""

    code = "STORAGE_ERROR"
    status_code = 500
    message = "Storage error"
