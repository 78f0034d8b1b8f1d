from __future__ import annotations


class MuteError(Exception):
    """Base class for pipeline failures that carry a human-readable category."""

    user_message = "Something went wrong while processing the video"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.user_message)
        self.detail = detail


class CompositionError(MuteError):
    user_message = "Failed to create video composition"


class NoVideoTrackError(CompositionError):
    user_message = "No video track found in video"


class NoAudioTrackError(CompositionError):
    user_message = "No audio track found in video"


class InvalidRangeError(CompositionError):
    user_message = "Invalid time range for muting"


class TrackInsertFailedError(CompositionError):
    user_message = "Failed to copy a track into the composition"


class ExportError(MuteError):
    user_message = "Failed to export video"


class ExportSetupError(ExportError):
    user_message = "Could not start the video export"


class EncodeFailedError(ExportError):
    user_message = "Failed to export video"

    def __init__(self, cause: str | BaseException | None = None) -> None:
        super().__init__(str(cause) if cause is not None else None)
        self.cause = cause


class ExportCancelledError(ExportError):
    user_message = "Video processing cancelled"


class SaveError(MuteError):
    user_message = "Failed to save video to library"


class DuplicateOperationError(SaveError):
    user_message = "This video is already being saved"


class SaveFileNotFoundError(SaveError):
    user_message = "Video file not found"


class FileTooLargeError(SaveError):
    user_message = "Video file too large"


class AccessDeniedError(SaveError):
    user_message = "Media library access denied"


class AccessPendingError(SaveError):
    user_message = "Media library access not determined"


class CommitFailedError(SaveError):
    user_message = "Failed to save video to library"


class UnsupportedFormatError(CommitFailedError):
    """Raised by a library when it rejects the container or codec of a file."""

    user_message = "The library does not accept this video format"


class FallbackExhaustedError(SaveError):
    user_message = "Failed to save video even after converting it to a compatible format"


class SaveCancelledError(SaveError):
    user_message = "Saving was cancelled"


def describe_error(error: BaseException | None) -> str:
    """Return the message category shown to users, never a raw internal code."""

    if error is None:
        return ""
    if isinstance(error, MuteError):
        return error.user_message
    return MuteError.user_message
