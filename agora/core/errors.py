"""Error taxonomy for the community pipeline.

Write-path failures carry structured reasons so the caller can report them to
the submitting user. Summary failures are recovered locally by the formatter.
"""

from typing import Optional, Sequence


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationFailed(AppError, ValueError):
    """Text or display name failed the content rules."""
    code = "validation_failed"
    status_code = 400

    def __init__(self, message: str, *, reasons: Sequence = (), **kwargs):
        super().__init__(message, **kwargs)
        self.reasons = list(reasons)

    def reason_codes(self) -> list[str]:
        return [r.code for r in self.reasons]

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["reasons"] = [{"code": r.code, "message": r.message} for r in self.reasons]
        return payload


class ContentRejected(ValidationFailed):
    """Formatter refused to produce a post."""
    code = "content_rejected"
    status_code = 422


class StructuralInputError(AppError, ValueError):
    """Source record is malformed; fatal to a single formatting call."""
    code = "structural_input_error"
    status_code = 400


class SummaryUnavailable(AppError):
    """Summarization collaborator unreachable, misconfigured, timed out or cancelled."""
    code = "summary_unavailable"
    status_code = 503


class SummaryRejected(AppError):
    """Transcript failed content screening before it was sent out."""
    code = "summary_rejected"
    status_code = 422
