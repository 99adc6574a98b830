"""Domain exception hierarchy for BuildRelay.

Services raise these instead of bare ``ValueError`` so that the global
exception handler can map them to the correct HTTP status code without
fragile string matching.

``DeliveryFailure`` and ``TransportFailure`` never reach an HTTP client:
they are raised inside notification senders and the broadcast hub, caught
at the channel / connection boundary, and logged.
"""


class BuildRelayError(Exception):
    """Base for all domain exceptions."""

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(BuildRelayError):
    """Referenced build, project or pipeline does not exist (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class BadRequestError(BuildRelayError):
    """Client sent an invalid request (400)."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(message, status_code=400)


class ValidationFailure(BuildRelayError):
    """Malformed status / level / stage text from a worker callback (422)."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, status_code=422)


class DeliveryFailure(BuildRelayError):
    """A notification channel failed to deliver (502)."""

    def __init__(self, channel: str, message: str = "Delivery failed"):
        super().__init__(f"{channel}: {message}", status_code=502)
        self.channel = channel


class TransportFailure(BuildRelayError):
    """A real-time broadcast could not be written to a connection (503)."""

    def __init__(self, message: str = "Broadcast failed"):
        super().__init__(message, status_code=503)


class PersistenceFailure(BuildRelayError):
    """A build record could not be read or written (503).

    Raised from worker callbacks after the failure is logged, so the hub
    answers the invocation with ``ok: false`` and the worker resends.
    """

    def __init__(self, message: str = "Build store unavailable"):
        super().__init__(message, status_code=503)


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string or validation error list.
    request_id : str
        The request ID for tracing.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
