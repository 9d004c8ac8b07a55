"""Error taxonomy for the progress engine."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ProgressServiceError(Exception):
    """Raised when a progress operation fails; carries an HTTP-ready payload."""

    def __init__(self, message: str, status_code: int = 400, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {"status": "error", "error": "progress_error", "reason": message}


class ValidationError(ProgressServiceError):
    """Malformed input, rejected before the store is touched."""

    def __init__(self, message: str, field: Optional[str] = None):
        payload = {"status": "error", "error": "validation_error", "reason": message}
        if field:
            payload["field"] = field
        super().__init__(message, status_code=400, payload=payload)
        self.field = field


class StoreUnavailable(ProgressServiceError):
    """Transient storage or transport failure; nothing is assumed committed."""

    def __init__(self, message: str = "Progress store unavailable"):
        super().__init__(
            message,
            status_code=503,
            payload={"status": "error", "error": "store_unavailable", "reason": message, "retryable": True},
        )


class PartialFailure(ProgressServiceError):
    """A completion was recorded but crediting (or the streak step) did not finish."""

    def __init__(self, kind: str, completion_id: str, stage: str = "credit"):
        message = f"{kind} completion {completion_id} recorded but {stage} step did not complete"
        super().__init__(
            message,
            status_code=500,
            payload={
                "status": "error",
                "error": "partial_failure",
                "reason": "Your progress was saved and will be credited shortly.",
                "stage": stage,
            },
        )
        self.kind = kind
        self.completion_id = completion_id
        self.stage = stage


class AchievementIssuanceFailure(ProgressServiceError):
    """Logged by the issuer and never raised past it."""

    def __init__(self, message: str):
        super().__init__(
            message,
            status_code=500,
            payload={"status": "error", "error": "achievement_issuance_failed", "reason": message},
        )
