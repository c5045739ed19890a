"""
Errors raised by the Bulk API 2.0 job modules.
"""
from typing import Optional


class BulkApiError(Exception):
    """Base class for bulk job failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.operation: Optional[str] = None
        self.sobject: Optional[str] = None

    def add_context(self, operation: str, sobject: str) -> "BulkApiError":
        """Record which bulk operation failed and prefix the message with it.

        Returns the same exception so callers can ``raise exc.add_context(...)``.
        """
        if self.operation is None:
            self.operation = operation
            self.sobject = sobject
            self.message = f"{operation} on {sobject} failed: {self.message}"
            self.args = (self.message,)
        return self

    def __str__(self):
        return self.message


class RemoteError(BulkApiError):
    """An HTTP call returned status >= 300 or never got a response."""

    def __init__(self, status: Optional[int], url: str, body: str = ""):
        if status is None:
            message = f"Request to {url} failed: {body}"
        else:
            message = f"HTTP {status} from {url}: {body}"
        super().__init__(message)
        self.status = status
        self.url = url
        self.body = body


class JobCreationError(BulkApiError):
    """The job was created but did not come back in the expected state."""

    def __init__(self, job, expected: str):
        super().__init__(f"Job {job.id} created in state {job.state}, expected {expected}")
        self.job = job


class JobFailedError(BulkApiError):
    def __init__(self, job):
        super().__init__(job.error_message or str(job.raw))
        self.job = job


class JobAbortedError(BulkApiError):
    def __init__(self, job):
        super().__init__(f"Job {job.id} was aborted")
        self.job = job


class JobTimeoutError(BulkApiError):
    """The job was still non-terminal when the poll timeout ran out."""

    def __init__(self, job_id: str, last_state: str, elapsed: float):
        super().__init__(
            f"Job {job_id} did not finish within {elapsed:.1f}s (last state: {last_state})"
        )
        self.job_id = job_id
        self.last_state = last_state
        self.elapsed = elapsed


class BulkJobError(BulkApiError):
    """Wraps an unexpected error raised while driving an already-created job."""

    def __init__(self, job_id: str, cause: BaseException):
        super().__init__(f"Job {job_id}: {cause}")
        self.job_id = job_id
