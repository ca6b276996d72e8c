"""Custom exceptions for the resilience backend."""


class TransientStoreError(Exception):
    """Raised when the persistent store cannot be read or written.

    Callers of the login guard must treat this as a denial.
    """

    def __init__(self, operation: str, reason: str = "unknown"):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store unavailable during {operation}: {reason}")


class JobPermanentFailure(Exception):
    """Raised by a job handler when retrying can never succeed.

    The scheduler moves the job straight to the terminal ``failed`` state.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class UnknownJobTypeError(JobPermanentFailure):
    """No handler is registered for a job type."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No handler registered for job type '{job_type}'")


class InvalidJobStateError(Exception):
    """Raised when an operator action does not fit the job's current status."""

    def __init__(self, job_id, status: str, expected: str):
        self.job_id = job_id
        self.status = status
        self.expected = expected
        super().__init__(f"Job {job_id} is '{status}', expected '{expected}'")
