"""Exception taxonomy for the insight engine.

Parse errors are always absorbed into a degraded answer by the response
parser. AI service errors propagate through the orchestrators, which record
them in the report and the audit log before re-raising a generation failure.
"""


class InsightEngineError(Exception):
    """Base class for all insight engine errors."""


class InvalidPeriod(InsightEngineError):
    """Report period is empty, reversed, or longer than one year."""


class ResponseParseError(InsightEngineError):
    """The AI response could not be turned into a JSON object."""


class NoJsonFound(ResponseParseError):
    pass


class MalformedJson(ResponseParseError):
    pass


class AIServiceError(InsightEngineError):
    """The generative-text backend call failed."""

    retryable = False


class ServiceUnavailable(AIServiceError):
    retryable = True


class RateLimited(AIServiceError):
    retryable = True


class InvalidResponse(AIServiceError):
    pass


class ReportGenerationFailed(InsightEngineError):
    """Terminal failure of one report run. The ERROR report stays queryable."""

    def __init__(self, report_id: str, message: str) -> None:
        super().__init__(f"Report {report_id} failed: {message}")
        self.report_id = report_id


class InsightGenerationFailed(InsightEngineError):
    pass


class ReportNotFound(InsightEngineError):
    pass
