"""Exceptions raised by the hook dispatcher."""


class HookError(Exception):
    """Base class for all dispatcher errors."""

    def __init__(self, message: str, hook_id: str | None = None):
        self.hook_id = hook_id
        super().__init__(message)


class ValidationError(HookError):
    """Raised when a hook definition is malformed."""


class NotFoundError(HookError):
    """Raised when a hook id is not registered."""

    def __init__(self, hook_id: str):
        super().__init__(f"Hook not found: {hook_id}", hook_id=hook_id)


class HandlerTimeoutError(HookError):
    """Raised when a single handler attempt exceeds its timeout."""

    def __init__(self, timeout_ms: int, hook_id: str | None = None):
        self.timeout_ms = timeout_ms
        super().__init__(f"Handler timed out after {timeout_ms}ms", hook_id=hook_id)


class HandlerExecutionError(HookError):
    """Raised when a handler failed on every allowed attempt."""

    def __init__(
        self,
        hook_id: str,
        hook_name: str,
        attempts: int,
        last_error: str,
        duration: float = 0.0,
    ):
        self.hook_name = hook_name
        self.attempts = attempts
        self.last_error = last_error
        self.duration = duration
        super().__init__(
            f"Hook {hook_name} failed after {attempts} attempts: {last_error}",
            hook_id=hook_id,
        )


class DecisionBackendError(HookError):
    """Raised by a decision backend when a completion cannot be obtained."""

    def __init__(self, message: str, provider: str | None = None, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class DecisionAuthenticationError(DecisionBackendError):
    """The backend rejected the configured credentials."""


class DecisionRateLimitError(DecisionBackendError):
    """The backend is throttling requests."""


class DecisionRequestError(DecisionBackendError):
    """The backend rejected the request or returned an unusable response."""


class ConfigError(HookError):
    """Raised when a hook configuration file cannot be read."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)
