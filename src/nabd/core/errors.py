"""Exception types shared by the core services and the HTTP layer.

Each exception maps to one HTTP status in :mod:`nabd.api.main`.  Messages are
intended to be safe to show to the client; internal detail goes to the log.
"""


class NabdError(Exception):
    """Base class for all application errors."""

    pass


class PromptNotFoundError(NabdError):
    """Raised when a prompt identifier does not match a stored prompt."""

    def __init__(self, prompt_id: str):
        super().__init__(f"Prompt not found: {prompt_id}")
        self.prompt_id = prompt_id


class StorageError(NabdError):
    """Raised when a database operation fails.

    The underlying ``sqlite3.Error`` is chained as ``__cause__`` and logged by
    the store before this is raised.
    """

    pass


class GenerationFailedError(NabdError):
    """Raised when image generation could not produce an image.

    The message is deliberately generic; attempt-level detail is logged by the
    gateway and never returned to the client.
    """

    def __init__(self, message: str = "Failed to generate image"):
        super().__init__(message)


class RateLimitExceededError(NabdError):
    """Raised when a client exceeds one of the request quotas.

    Attributes:
        scope: Name of the quota that was exceeded (``api``, ``write``, ``generate``).
        retry_after: Whole seconds until the current window resets (always >= 1).
    """

    def __init__(self, scope: str, retry_after: int):
        super().__init__(f"Too many requests ({scope}), retry after {retry_after}s")
        self.scope = scope
        self.retry_after = retry_after
