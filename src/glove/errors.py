"""Exception types raised by the runtime."""


class GloveError(Exception):
    """Base class for every error the runtime raises on purpose."""


class AbortError(GloveError):
    """The current request was aborted.

    Not a failure: callers of ``process_request`` should treat it as the
    cancellation outcome of the request.
    """

    def __init__(self, message: str = "Operation aborted"):
        super().__init__(message)


class ProviderError(GloveError):
    """The model provider failed (HTTP error, network error, bad payload)."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class SlotConflictError(GloveError):
    """A slot id was pushed while an earlier slot with that id is still pending."""


class AlreadyBuiltError(GloveError):
    """Tools can only be folded in before ``build()``."""


class NotBuiltError(GloveError):
    """``process_request`` was called before ``build()``."""
