"""Error codes dictionary for the Reelforge API.

This is the single source of truth for all error codes, their retryability,
and suggested recovery actions. Used by exception handlers to generate
machine-readable error responses.
"""

from typing import Any, TypedDict


class SuggestedActionSpec(TypedDict, total=False):
    """Specification for suggested recovery action."""

    action: str
    endpoint: str
    parameters: dict[str, Any]


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str
    suggested_endpoint: str
    suggested_fix: str
    parameters: dict[str, Any]


# Error codes dictionary - single source of truth
ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Resource errors
    # ==========================================================================
    "VIDEO_NOT_FOUND": {
        "retryable": False,
    },
    "RENDER_NOT_FOUND": {
        "retryable": False,
    },
    "NO_SEGMENTS_FOUND": {
        "retryable": False,
    },
    "NO_CLIPS_AVAILABLE": {
        "retryable": False,
        "suggested_fix": "Add clips for this style and aspect ratio to the catalog",
    },
    # ==========================================================================
    # Validation errors (not retryable, fix input)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
    },
    "INVALID_TIMELINE_INPUT": {
        "retryable": False,
    },
    "INVALID_TIMELINE": {
        "retryable": False,
    },
    "MISSING_PROMPT": {
        "retryable": False,
    },
    "MISSING_REQUIRED_FIELDS": {
        "retryable": False,
    },
    # ==========================================================================
    # Conflict errors
    # ==========================================================================
    "CONFLICT": {
        "retryable": False,
    },
    "ALREADY_RENDERING": {
        "retryable": False,
        "suggested_action": "poll_status",
        "suggested_endpoint": "GET /api/renders/{render_id}",
    },
    # ==========================================================================
    # Provider errors
    # ==========================================================================
    "PROVIDER_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 5000, "max_retries": 3},
    },
    "PROVIDER_REJECTED": {
        "retryable": False,
    },
    "MISSING_JOB_ID": {
        "retryable": False,
    },
    # ==========================================================================
    # Persistence errors
    # ==========================================================================
    "DB_INSERT_FAILED": {
        "retryable": True,
        "suggested_action": "sync_fallback",
        "suggested_endpoint": "POST /api/videos/sync",
        "suggested_fix": "Call the sync endpoint with the returned provider_job_id",
    },
    "DATABASE_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    # ==========================================================================
    # Render errors
    # ==========================================================================
    "RENDER_FAILED": {
        "retryable": True,
        "suggested_action": "retry_render",
        "suggested_endpoint": "POST /api/renders/{render_id}/render",
    },
    "ENCODER_UNAVAILABLE": {
        "retryable": False,
    },
    "STORAGE_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    # ==========================================================================
    # Auth / request errors
    # ==========================================================================
    "UNAUTHORIZED": {
        "retryable": False,
    },
    "FORBIDDEN": {
        "retryable": False,
    },
    "BAD_REQUEST": {
        "retryable": False,
    },
    "NOT_FOUND": {
        "retryable": False,
    },
    "METHOD_NOT_ALLOWED": {
        "retryable": False,
    },
    # ==========================================================================
    # System errors
    # ==========================================================================
    "INTERNAL_ERROR": {
        "retryable": True,
        "suggested_action": "retry_with_backoff",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested actions
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
