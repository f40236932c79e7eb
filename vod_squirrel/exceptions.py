"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class VodSquirrelError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(VodSquirrelError):
    """Raised for issues related to configuration loading or validation."""


class VideoUnavailableError(VodSquirrelError):
    """Raised when a video cannot be found or its playback token is withheld."""


class PlaylistError(VodSquirrelError):
    """Raised when a master or media playlist cannot be fetched or parsed."""


class SessionConnectionError(VodSquirrelError):
    """Raised when the EventSub websocket cannot be opened or upgraded."""


class SessionTerminatedError(VodSquirrelError):
    """Raised when the event session gives up reconnecting."""


class ProtocolError(VodSquirrelError):
    """
    Raised when an EventSub frame is missing a required field or cannot be parsed.
    """


class PoisonedConnection(VodSquirrelError):
    """Raised when no frame arrived within the keepalive deadline."""


class RegistrationError(VodSquirrelError):
    """Raised when a single subscription request is rejected by the provider."""

    def __init__(self, subject_id: int, message: str, status: int | None = None):
        super().__init__(f"Subscription for {subject_id} failed: {message}")
        self.subject_id = subject_id
        self.status = status


class SegmentTransferError(VodSquirrelError):
    """Raised when a segment could not be fetched after all retry attempts."""

    def __init__(self, url: str, attempts: int, cause: Exception | None = None):
        super().__init__(f"Failed to fetch '{url}' after {attempts} attempt(s): {cause}")
        self.url = url
        self.attempts = attempts


class IncompleteDownloadError(VodSquirrelError):
    """Raised when a download job ends with failed segments."""

    def __init__(self, failed_indices: list[int], completed: int):
        preview = ", ".join(map(str, failed_indices[:10]))
        if len(failed_indices) > 10:
            preview += ", ..."
        super().__init__(
            f"{len(failed_indices)} segment(s) failed ({preview}); "
            f"{completed} completed. Refusing to concatenate an incomplete set."
        )
        self.failed_indices = failed_indices
        self.completed = completed


class ConcatenationError(VodSquirrelError):
    """Raised when ffmpeg fails to join the downloaded segments."""


class UploadError(VodSquirrelError):
    """Raised when the final video could not be uploaded."""


class OperationCancelled(Exception):
    """
    Signals that an operation stopped because cancellation was requested.

    Not a VodSquirrelError: callers treat it as a clean early return.
    """


class TwitchAPIError(VodSquirrelError):
    """Raised when a Twitch API request fails or returns an error payload."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
