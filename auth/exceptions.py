"""Typed exceptions for step-up verification failures."""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class InputInvalidError(AuthError):
    """
    Local validation failed (e.g. wrong digit count, empty password).

    Recoverable: re-prompt the same field.
    """

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class AcquisitionFailedError(AuthError):
    """
    A collector could not acquire its factor.

    Camera permission denied, camera already in use, or the send-code
    request failed. The user may retry or cancel.
    """


class TransportError(AuthError):
    """Network failure, timeout, or unreadable response from the authority."""

    GENERIC_MESSAGE = "Error connecting to the server"

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(self.GENERIC_MESSAGE)


class AuthorityRejectedError(AuthError):
    """
    The remote authority returned an explicit negative verdict.

    `cleared` lists the factor kinds discarded from the flow so the
    presentation layer knows which fields to re-prompt.
    """

    def __init__(self, message: str, cleared: tuple = ()):
        self.message = message
        self.cleared = tuple(cleared)
        super().__init__(message)


class PolicyViolationError(AuthError):
    """
    Programmer error: the flow was driven outside its policy.

    Submitting with a missing required factor, or attaching a factor
    that is still locked behind an unresolved gate. Never user-visible.
    """


class FlowClosedError(AuthError):
    """The flow is not accepting input: cancelled, finished, submitting or awaiting email."""
