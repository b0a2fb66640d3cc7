"""
Error taxonomy for the analysis pipeline.

Every error carries the id of the job it belongs to so failures can be
correlated with progress entries and logs. The orchestrator stamps the
job id on errors raised by stages that do not know it.
"""

from typing import Optional


class AnalysisError(Exception):
    """Base class for all pipeline errors"""

    error_type = "unknown_failure"

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def __str__(self) -> str:
        if self.job_id:
            return f"[{self.job_id}] {self.message}"
        return self.message


class ExtractionFailure(AnalysisError):
    """Media acquisition, probing or transcoding failed"""

    error_type = "extraction_failure"


class InferenceTransportError(AnalysisError):
    """Remote inference call failed after exhausting its retry budget"""

    error_type = "inference_transport_error"

    def __init__(self, message: str, job_id: Optional[str] = None,
                 attempts: int = 0, status_code: Optional[int] = None):
        super().__init__(message, job_id)
        self.attempts = attempts
        self.status_code = status_code


class InferenceDeclined(AnalysisError):
    """Remote model kept refusing the request after all retries; raised from a Declined result by completed_text"""

    error_type = "inference_declined"

    def __init__(self, message: str, job_id: Optional[str] = None, attempts: int = 0):
        super().__init__(message, job_id)
        self.attempts = attempts


class ParseFailure(AnalysisError):
    """A model response could not be mapped to the expected shape"""

    error_type = "parse_failure"


class InsufficientCredits(AnalysisError):
    """The user's balance does not cover the cost of the analysis"""

    error_type = "insufficient_credits"

    def __init__(self, message: str, job_id: Optional[str] = None,
                 required: int = 0, available: Optional[int] = None):
        super().__init__(message, job_id)
        self.required = required
        self.available = available


class UnknownFailure(AnalysisError):
    """Catch-all wrapper for unexpected exceptions"""

    error_type = "unknown_failure"

    def __init__(self, message: str, job_id: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, job_id)
        self.cause = cause
