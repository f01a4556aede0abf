"""
Exceptions for the Milvue client.

This module provides the error hierarchy raised by the submit, poll and retrieve
stages. Every error derives from MilvueError so callers can catch the whole family.
"""


class MilvueError(Exception):
    """Base exception for all Milvue client errors."""

    pass


class ValidationError(MilvueError):
    """Raised when a batch of datasets does not describe exactly one study."""

    pass


class ConfigError(MilvueError):
    """Error related to configuration or request parameters."""

    pass


class NoInferenceCommandError(ConfigError):
    """Raised when no inference command was requested."""

    def __init__(self) -> None:
        super().__init__("No inference command provided.")


class NetworkError(MilvueError):
    """Transport-level failure (connection refused, timeout, ...)."""

    pass


class RemoteError(MilvueError):
    """The Milvue API answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ProcessingError(MilvueError):
    """The Milvue API reported a terminal failure for a study."""

    def __init__(self, study_uid: str, message: str | None = None) -> None:
        self.study_uid = study_uid
        self.message = message
        detail = f"Processing failed for study {study_uid}"
        if message:
            detail = f"{detail}: {message}"
        super().__init__(detail)


class PollTimeoutError(MilvueError, TimeoutError):
    """Polling stopped before the study reached a terminal state."""

    pass


class DecodeError(MilvueError):
    """A result payload could not be decoded into DICOM datasets."""

    pass
