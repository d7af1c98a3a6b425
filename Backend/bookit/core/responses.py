"""
Standardized API Response Module

Provides consistent response formatting across all API endpoints.

RESPONSE FORMAT:
    Error:
        {
            "error": {
                "code": "ERROR_CODE",
                "message": "Human-readable message",
                "details": {...}  # Optional extra context
            },
            "status": "error"
        }

ERROR CODES:
    - NOT_FOUND: Business, service, staff or appointment not found
    - INVALID_INPUT: Malformed date/time strings, non-positive durations
    - VALIDATION_ERROR: Request body or query failed schema validation
    - INVALID_TIMEZONE: Business timezone is not a known IANA zone
    - CONFLICT: Slot taken or constraint violated while booking
    - STATE_CONFLICT: Illegal appointment status transition
    - STORAGE_UNAVAILABLE: Database unreachable, safe to retry
"""

from typing import Optional


# ============================================================================
# COMMON ERROR CODES
# ============================================================================

class ErrorCodes:
    """Standard error codes for API responses."""

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"

    # Validation errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_TIMEZONE = "INVALID_TIMEZONE"

    # Conflict errors (409)
    CONFLICT = "CONFLICT"
    STATE_CONFLICT = "STATE_CONFLICT"

    # Server errors (5xx)
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """
    Create a standardized error response dict.
    """
    response = {
        "error": {
            "code": code,
            "message": message,
        },
        "status": "error",
    }
    if details:
        response["error"]["details"] = details
    return response
