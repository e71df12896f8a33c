"""Exception types for the balin queue."""


class BalinError(Exception):
    """Base exception for all queue errors."""

    pass


class ConfigurationError(BalinError):
    """Raised when the queue cannot be configured from the given settings."""

    pass


class UnsupportedBackendError(ConfigurationError):
    """Raised when the database URL names a backend the queue cannot drive."""

    def __init__(self, backend: str, message: str = None):
        self.backend = backend
        if message is None:
            message = f"Unsupported database backend: {backend}"
        super().__init__(message)


class StoreUnavailableError(BalinError):
    """Raised when the backing store cannot be reached at startup."""

    pass


class PayloadEncodeError(BalinError):
    """Raised when a payload cannot be serialized on enqueue."""

    def __init__(self, task_name: str, message: str = None):
        self.task_name = task_name
        if message is None:
            message = f"Payload for task {task_name} is not JSON serializable"
        super().__init__(message)


class PayloadDecodeError(BalinError):
    """
    Raised when a claimed job's payload cannot be decoded.

    The job has already been claimed when this is raised; callers should
    route it through the error path using ``job_id``.
    """

    def __init__(self, job_id: int, task_name: str, message: str = None):
        self.job_id = job_id
        self.task_name = task_name
        if message is None:
            message = f"Payload of job {job_id} ({task_name}) could not be decoded"
        super().__init__(message)


class ClaimContentionError(BalinError):
    """Raised when a claim keeps losing races to other writers."""

    def __init__(self, attempts: int, message: str = None):
        self.attempts = attempts
        if message is None:
            message = f"Claim lost to concurrent writers {attempts} times"
        super().__init__(message)
